from .threads import MessageResponse, ThreadResponse, ThreadDetailResponse
from .auth import UserCreate, UserResponse, Token, TokenPayload
from .status import ModelUsage, PoolUsage, StatusResponse

__all__ = ["MessageResponse", "ThreadResponse", "ThreadDetailResponse",
           "UserCreate", "UserResponse", "Token", "TokenPayload",
           "ModelUsage", "PoolUsage", "StatusResponse"]
