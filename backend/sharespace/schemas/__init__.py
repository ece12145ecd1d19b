from sharespace.schemas.auth import AuthResult
from sharespace.schemas.profile import RegistrationForm, ProfileOut, PublicProfile
from sharespace.schemas.product import ProductDraft, ProductUpdate, ProductOut
from sharespace.schemas.chat import ConversationOut, MessageOut
from sharespace.schemas.feedback import FeedbackCreate, FeedbackOut
from sharespace.schemas.rating import RatingCreate, RatingOut
