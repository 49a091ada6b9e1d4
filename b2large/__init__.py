from .version import __version__ as __version__
from .api import (
    B2Api as B2Api,
    PartInfo as PartInfo,
    PartsPage as PartsPage,
    PartTransferApi as PartTransferApi,
    SessionApi as SessionApi,
)
from .chunk import (
    Chunk as Chunk,
    Plan as Plan,
    ResumeContext as ResumeContext,
    build_plan as build_plan,
)
from .configuration import (
    Configuration as Configuration,
    configuration_from_path as configuration_from_path,
)
from .controller import (
    CopyDescriptor as CopyDescriptor,
    State as State,
    Transfer as Transfer,
    TransferSettings as TransferSettings,
    UploadDescriptor as UploadDescriptor,
    start_transfer as start_transfer,
)
from .exception import (
    InvalidPartSize as InvalidPartSize,
    InvalidSize as InvalidSize,
    NotAuthorized as NotAuthorized,
    PartSizeOverflow as PartSizeOverflow,
    PartSizeTooSmall as PartSizeTooSmall,
    ResumeSessionInvalid as ResumeSessionInvalid,
    RetriesExhausted as RetriesExhausted,
    TransferCanceled as TransferCanceled,
    TransferError as TransferError,
    TransportError as TransportError,
    TransportFatal as TransportFatal,
    TransportRetryable as TransportRetryable,
)
from .reconcile import Reconciliation as Reconciliation
from .slots import (
    SlotPool as SlotPool,
    UploadDestination as UploadDestination,
    UploadSlot as UploadSlot,
)
from .transfer_queue import Progress as Progress, TransferQueue as TransferQueue
from . import api as api
from . import chunk as chunk
from . import configuration as configuration
from . import constants as constants
from . import controller as controller
from . import display as display
from . import exception as exception
from . import reconcile as reconcile
from . import slots as slots
from . import transfer_queue as transfer_queue
from . import utilities as utilities
