"""
Built-in special-day email skeletons.

Placeholders are filled by the MessageRenderer with the `customer`
namespace plus store_name, store_url, offer_code and discount_percent.
"""

from dataclasses import dataclass
from typing import Dict

from .models import SpecialDayType


@dataclass(frozen=True)
class SpecialDayEmail:
    subject: str
    html: str
    code_prefix: str
    discount_percent: int

    def offer_code(self, year: int) -> str:
        return f"{self.code_prefix}{year}"


_LAYOUT = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{title}</title>
  <style>
    body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
    .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
    .header {{ background: {gradient}; color: white; padding: 30px; text-align: center; border-radius: 10px 10px 0 0; }}
    .content {{ background: #f9f9f9; padding: 30px; border-radius: 0 0 10px 10px; }}
    .offer {{ background: #fff; border: 2px dashed {accent}; padding: 20px; margin: 20px 0; text-align: center; border-radius: 8px; }}
    .footer {{ text-align: center; margin-top: 20px; color: #888; font-size: 12px; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="header">
      <div style="font-size: 48px;">{icon}</div>
      <h1>{headline}</h1>
      <p>{tagline}</p>
    </div>
    <div class="content">
      <h2>Dear {{{{customer.first_name}}}} {{{{customer.last_name}}}},</h2>
      <p>{greeting}</p>
      <p>{intro}</p>
      <div class="offer">
        <h3>🎁 {offer_title}</h3>
        <p><strong>{{{{discount_percent}}}}% OFF</strong> on your next purchase!</p>
        <p>Use code: <strong>{{{{offer_code}}}}</strong></p>
        <p><em>Valid until the end of this month</em></p>
      </div>
      <p>{closing}</p>
      <p>Best wishes,<br>The {{{{store_name}}}} Team</p>
    </div>
    <div class="footer">
      <p>This email was sent to {{{{customer.email}}}}</p>
      <p><a href="{{{{store_url}}}}">{{{{store_name}}}}</a> | Customer Care</p>
    </div>
  </div>
</body>
</html>
"""


BIRTHDAY_EMAIL = SpecialDayEmail(
    subject="🎉 Happy Birthday, {{customer.first_name}}! 🎂",
    html=_LAYOUT.format(
        title="Happy Birthday!",
        gradient="linear-gradient(135deg, #667eea 0%, #764ba2 100%)",
        accent="#764ba2",
        icon="🎂",
        headline="Happy Birthday, {{customer.first_name}}! 🎉",
        tagline="Wishing you a fantastic day filled with joy and happiness!",
        greeting="On this special day, we want to celebrate you! 🎊",
        intro="As a valued customer of {{store_name}}, we're excited to offer you a special birthday treat:",
        offer_title="Birthday Special Offer",
        closing="We appreciate your loyalty and look forward to serving you for many more years to come!",
    ),
    code_prefix="BIRTHDAY",
    discount_percent=20,
)

ANNIVERSARY_EMAIL = SpecialDayEmail(
    subject="💝 Happy Anniversary, {{customer.first_name}}! 🎊",
    html=_LAYOUT.format(
        title="Happy Anniversary!",
        gradient="linear-gradient(135deg, #ff6b6b 0%, #ee5a24 100%)",
        accent="#ee5a24",
        icon="💝",
        headline="Happy Anniversary, {{customer.first_name}}! 🎊",
        tagline="Celebrating this special milestone with you!",
        greeting="Congratulations on your anniversary! 🎉",
        intro="We're honored to be part of your journey and want to celebrate this special occasion with you:",
        offer_title="Anniversary Special Offer",
        closing="Thank you for choosing {{store_name}}. We look forward to many more years of serving you!",
    ),
    code_prefix="ANNIVERSARY",
    discount_percent=25,
)

SPECIAL_DAY_EMAILS: Dict[SpecialDayType, SpecialDayEmail] = {
    SpecialDayType.BIRTHDAY: BIRTHDAY_EMAIL,
    SpecialDayType.ANNIVERSARY: ANNIVERSARY_EMAIL,
}
