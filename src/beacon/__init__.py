"""beacon: mDNS peer-discovery listener"""

from .engine import DiscoveryEngine as DiscoveryEngine
from .errors import DecodeError as DecodeError
from .errors import DiscoveryError as DiscoveryError
from .errors import MissingIdentityField as MissingIdentityField
from .errors import SocketUnavailable as SocketUnavailable
from .errors import PeerDirectoryError as PeerDirectoryError
from .errors import ReceiveError as ReceiveError
