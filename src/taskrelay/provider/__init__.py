"""TaskRelay Provider -- 内容生成器边界

provider 包的公开接口导出。
"""

from .echo import ECHO_ARTIFACT_NAME, EchoContentProducer
from .models import ArtifactDelta, ProducerDelta, StatusDelta
from .protocols import ContentProducer

__all__ = [
    "ContentProducer",
    "StatusDelta",
    "ArtifactDelta",
    "ProducerDelta",
    "EchoContentProducer",
    "ECHO_ARTIFACT_NAME",
]
