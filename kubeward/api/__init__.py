"""Resource model: kinds, objects, conditions and their wire format."""

from .kinds import KINDS as KINDS
from .kinds import decode as decode
from .kinds import encode as encode
from .model import Cluster as Cluster
from .model import Kind as Kind
from .model import KubeCluster as KubeCluster
from .model import KubeMachine as KubeMachine
from .model import Machine as Machine
from .model import ObjectKey as ObjectKey
from .model import ObjectMeta as ObjectMeta
from .model import ObjectRef as ObjectRef
from .model import Resource as Resource
