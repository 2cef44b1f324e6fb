import logging
from html import escape

from . import email as mailer
from .config import WEB_BASE_URL
from .models import Disclosure, ShareGrant

logger = logging.getLogger(__name__)

_CARD = """
<html>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; background: #f5f6f8; padding: 24px;">
    <div style="max-width: 520px; margin: 0 auto; background: #ffffff; border-radius: 12px; padding: 24px; box-shadow: 0 10px 25px rgba(15,23,42,0.08);">
      <h2 style="margin-top: 0; font-size: 20px; color: #0f172a;">{title}</h2>
      {paragraphs}
      {button}
    </div>
  </body>
</html>
"""

_PARAGRAPH = '<p style="font-size: 14px; color: #1e293b; line-height: 1.5;">{}</p>'

_BUTTON = """
      <div style="margin: 24px 0;">
        <a href="{link}" style="display: inline-block; background: #2563eb; color: #fff; padding: 12px 24px; border-radius: 999px; text-decoration: none; font-weight: 600;">
          {label}
        </a>
      </div>
      <p style="font-size: 12px; color: #64748b;">If the button doesn&apos;t work, copy this link into your browser:<br /><a href="{link}">{link}</a></p>
"""


def share_link(grant: ShareGrant) -> str:
    return f"{WEB_BASE_URL.rstrip('/')}/buyer/disclosure/view/{grant.access_token}"


def _seller_name(disclosure: Disclosure) -> str:
    seller = disclosure.seller
    name = " ".join(p for p in (seller.get("first_name"), seller.get("last_name")) if p)
    return name or "The seller"


def _address(disclosure: Disclosure) -> str:
    return disclosure.header.get("property_address") or "the property"


def _html(title: str, paragraphs, link: str | None = None, label: str = "") -> str:
    body = "\n      ".join(_PARAGRAPH.format(escape(p)) for p in paragraphs if p)
    button = _BUTTON.format(link=escape(link), label=escape(label)) if link else ""
    return _CARD.format(title=escape(title), paragraphs=body, button=button)


def _send_quietly(kind: str, to: str | None, subject: str, paragraphs, link=None, label="", **kwargs):
    if not to:
        logger.info("skipping %s notification; no recipient address", kind)
        return False
    try:
        mailer.send_email(
            to,
            subject,
            "\n\n".join(p for p in paragraphs if p) + (f"\n\n{link}" if link else ""),
            html_body=_html(subject, paragraphs, link, label),
            **kwargs,
        )
        return True
    except Exception:
        logger.exception("%s notification to %s failed", kind, to)
        return False


def share_created(grant: ShareGrant, disclosure: Disclosure):
    seller_name = _seller_name(disclosure)
    address = _address(disclosure)
    link = share_link(grant)
    subject = f"Seller's Disclosure: {address}"
    paragraphs = [
        f"Hi {grant.recipient_name or 'there'},",
        f"{seller_name} shared the seller's disclosure for {address} with you.",
        grant.message,
        "Review the disclosure, then acknowledge and sign it from the link below.",
    ]
    text_body = "\n\n".join(p for p in paragraphs if p) + f"\n\nOpen disclosure: {link}\n"
    mailer.send_email(
        grant.recipient_email,
        subject,
        text_body,
        html_body=_html("Disclosure shared with you", paragraphs, link, "Review Disclosure"),
        sender_name=mailer.format_sender_name(seller_name),
        reply_to=disclosure.seller.get("email"),
    )


def seller_signed(disclosure: Disclosure):
    address = _address(disclosure)
    _send_quietly(
        "signed_seller",
        disclosure.seller.get("email"),
        f"Disclosure signed: {address}",
        [
            f"Your seller's disclosure for {address} has been signed.",
            "You can now share it with prospective buyers.",
        ],
    )


def share_acknowledged(grant: ShareGrant, disclosure: Disclosure):
    who = grant.recipient_name or grant.recipient_email
    _send_quietly(
        "share_acknowledged",
        disclosure.seller.get("email"),
        f"Disclosure acknowledged: {_address(disclosure)}",
        [f"{who} acknowledged receipt of your disclosure for {_address(disclosure)}."],
    )


def share_signed(grant: ShareGrant, disclosure: Disclosure):
    who = grant.recipient_name or grant.recipient_email
    _send_quietly(
        "share_signed",
        disclosure.seller.get("email"),
        f"Disclosure signed by buyer: {_address(disclosure)}",
        [f"{who} signed your disclosure for {_address(disclosure)}."],
    )
