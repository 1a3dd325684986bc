from .threads import Thread, Message, Base
from .users import User

__all__ = ["Thread", "Message", "User", "Base"]
