"""SQLAlchemy models for XChatLife.

All models are imported here so that ``Base.metadata`` knows every table
(``init_db`` and the test fixtures call ``create_all`` on it). If you add a
new model, import it in this file.
"""

from app.models.character import Character
from app.models.character_property import (
    CharacterBodyType,
    CharacterBreastSize,
    CharacterEthnicity,
    CharacterEyeColor,
    CharacterGender,
    CharacterHairColor,
    CharacterHairStyle,
    CharacterOccupation,
    CharacterPersonality,
    CharacterRelationship,
    CharacterStyle,
)
from app.models.financial import FinancialCategory, FinancialTransaction
from app.models.role import Role
from app.models.subscription import Subscription, SubscriptionPlan
from app.models.ticket import Ticket, TicketActivity, TicketReply
from app.models.token_transaction import TokenTransaction
from app.models.user import User

__all__ = [
    "Character",
    "CharacterBodyType",
    "CharacterBreastSize",
    "CharacterEthnicity",
    "CharacterEyeColor",
    "CharacterGender",
    "CharacterHairColor",
    "CharacterHairStyle",
    "CharacterOccupation",
    "CharacterPersonality",
    "CharacterRelationship",
    "CharacterStyle",
    "FinancialCategory",
    "FinancialTransaction",
    "Role",
    "Subscription",
    "SubscriptionPlan",
    "Ticket",
    "TicketActivity",
    "TicketReply",
    "TokenTransaction",
    "User",
]
