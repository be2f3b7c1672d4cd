from genflow.db.database import Base

# Import all models so metadata knows about every table
from .generation_request import GenerationRequest
from .batch_job import BatchJob
from .generated_media import GeneratedMedia
from .rate_limit_window import RateLimitWindow
from .user_credential import UserCredential
from .status import BatchStatus, GenerationStatus
