"""Referral module for Red de Amigos.

- Referral codes: minting, resolution and share links
- Referral management: owner-scoped add/update/delete/list
- Real-time change channel feeding local referral lists
"""

from redamigos.referral.codes import ReferralCodeService, referral_code_service
from redamigos.referral.realtime import ChangeBroker, ReferralFeed, change_broker
from redamigos.referral.service import ReferralService, referral_service

__all__ = [
    "ReferralCodeService",
    "referral_code_service",
    "ChangeBroker",
    "ReferralFeed",
    "change_broker",
    "ReferralService",
    "referral_service",
]
