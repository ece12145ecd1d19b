from sharespace.models.base import Base
from sharespace.models.identity import AuthIdentity
from sharespace.models.profile import Profile, UserRoleAssignment
from sharespace.models.product import Product
from sharespace.models.chat import Conversation, Message
from sharespace.models.feedback import Feedback
from sharespace.models.rating import SellerRating
