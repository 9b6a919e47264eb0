# recorder/services/branding.py
from __future__ import annotations
import os, re, html
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote
from ..config import get_settings

settings = get_settings()

# Branding via env (safe defaults)
BRAND_NAME          = os.getenv("BRAND_NAME", "HALL Recorder")
BRAND_LOGO_URL      = os.getenv("BRAND_LOGO_URL", "")
BRAND_PRIMARY_COLOR = os.getenv("BRAND_PRIMARY_COLOR", "#F97316")
BRAND_ACCENT_COLOR  = os.getenv("BRAND_ACCENT_COLOR",  "#EA580C")
BRAND_FOOTER_TEXT   = os.getenv("BRAND_FOOTER_TEXT",  f"© {BRAND_NAME} • All rights reserved")

SUPPORT_CATEGORY_LABELS = {
    "question": "Question",
    "bug": "Bug / Technical issue",
    "feature": "Feature request",
    "other": "Other",
}

def _split_sections(text: str) -> Dict[str, str]:
    """
    Split meeting notes on markdown headings such as 'Executive Summary',
    'Key Decisions', 'Action Items'. Falls back to a single 'Body'.
    """
    if not text:
        return {"Body": ""}

    t = text.replace("\r\n", "\n").replace("\r", "\n")
    pattern = r"(?i)^(?:#{1,3}\s*)?(Executive Summary|Key Decisions|Action Items|Discussion)\s*:?\s*$"
    parts: Dict[str, str] = {}
    last = "Body"
    buf: List[str] = []
    for line in t.split("\n"):
        m = re.match(pattern, line.strip())
        if m:
            if buf and "\n".join(buf).strip():
                parts[last] = "\n".join(buf).strip()
            buf = []
            last = m.group(1).title()
        elif not re.match(r"^#\s", line.strip()):
            buf.append(line)
    if buf and "\n".join(buf).strip():
        parts[last] = "\n".join(buf).strip()
    return parts or {"Body": t.strip()}

_UL_MARK = re.compile(r"^[-*•]\s*")
_OL_MARK = re.compile(r"^\s*\d+\.\s*")

def _bullets_to_html(body: str) -> str:
    """
    Convert simple '-' or '*' bullets and '1.' lists into <ul>/<ol>.
    Otherwise escape + <p>.
    """
    if not body:
        return ""
    lines = [l.rstrip() for l in body.split("\n") if l.strip() != ""]
    if not lines:
        return ""

    is_ul = all(l.strip().startswith(("-", "*", "•")) for l in lines)
    is_ol = all(re.match(r"^\s*\d+\.", l) for l in lines)

    if is_ul:
        items = "".join(f"<li>{html.escape(_UL_MARK.sub('', l.strip()))}</li>" for l in lines)
        return f"<ul style='margin:0 0 8px 20px'>{items}</ul>"
    if is_ol:
        items = "".join(f"<li>{html.escape(_OL_MARK.sub('', l).strip())}</li>" for l in lines)
        return f"<ol style='margin:0 0 8px 20px'>{items}</ol>"

    return "<p style='white-space:pre-wrap;margin:0'>" + html.escape(body) + "</p>"

def _section_block(title: str, content: str) -> str:
    return (
        f"<h3 style='margin:0 0 8px 0;font-size:16px;color:#111'>{html.escape(title)}</h3>"
        f"{_bullets_to_html(content)}"
    )

def _label(title: str) -> str:
    return (
        f"<p style='color:#6b7280;font-size:11px;font-weight:600;text-transform:uppercase;"
        f"letter-spacing:0.5px;margin:16px 0 6px 0'>{html.escape(title)}</p>"
    )

def _cta_button(href: str, label: str) -> str:
    return (
        f"<a href='{html.escape(href)}' "
        f"style='display:inline-block;background:{BRAND_PRIMARY_COLOR};color:#fff;"
        f"padding:12px 24px;border-radius:8px;text-decoration:none;font-weight:600;margin-right:10px'>"
        f"{html.escape(label)}</a>"
    )

def _layout(heading: str, subheading: str, body_html: str) -> str:
    logo_html = (
        f"<img src='{html.escape(BRAND_LOGO_URL)}' alt='{html.escape(BRAND_NAME)}' "
        f"style='height:28px;display:block' />"
        if BRAND_LOGO_URL else f"<div style='font-weight:800;font-size:18px;color:#fff'>{html.escape(BRAND_NAME)}</div>"
    )
    return f"""\
<!doctype html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="color-scheme" content="light only">
  <meta name="viewport" content="width=device-width,initial-scale=1">
</head>
<body style="margin:0;padding:0;background:#f6f7f9">
  <table role="presentation" cellpadding="0" cellspacing="0" width="100%" style="background:linear-gradient(135deg,{BRAND_PRIMARY_COLOR} 0%,{BRAND_ACCENT_COLOR} 100%)">
    <tr><td style="padding:16px 20px">
      {logo_html}
    </td></tr>
  </table>

  <table role="presentation" cellpadding="0" cellspacing="0" width="100%">
    <tr><td align="center" style="padding:24px 12px">
      <table role="presentation" cellpadding="0" cellspacing="0" width="640" style="max-width:640px;background:#ffffff;border-radius:12px;box-shadow:0 2px 8px rgba(0,0,0,.06);overflow:hidden">
        <tr><td style="padding:24px 24px 8px 24px">
          <h2 style="margin:0 0 4px 0;font-size:20px;color:#111">{html.escape(heading)}</h2>
          <div style="font-size:14px;color:#555">{html.escape(subheading)}</div>
        </td></tr>

        <tr><td style="padding:8px 24px 24px 24px">
          {body_html}
        </td></tr>
      </table>

      <div style="font-size:12px;color:#6b7280;margin-top:16px">{html.escape(BRAND_FOOTER_TEXT)}</div>
    </td></tr>
  </table>
</body>
</html>
"""

def _signature_block(sender_name: Optional[str], signature_text: Optional[str]) -> str:
    if not sender_name and not signature_text:
        return ""
    lines = "".join(
        f"<div>{html.escape(line)}</div>"
        for line in [sender_name or "", *(signature_text or "").splitlines()]
        if line.strip()
    )
    return f"<div style='margin-top:24px;padding-top:12px;border-top:1px solid #e5e7eb;font-size:14px;color:#374151'>{lines}</div>"

def _signature_text(sender_name: Optional[str], signature_text: Optional[str]) -> str:
    lines = [l for l in [sender_name or "", *(signature_text or "").splitlines()] if l.strip()]
    return "\n--\n" + "\n".join(lines) + "\n" if lines else ""

def render_meeting_notes_email_html(*, meeting_title: str, summary_text: str,
                                    sender_name: Optional[str] = None, signature_text: Optional[str] = None) -> str:
    sections = _split_sections(summary_text)
    blocks = []
    for key in ["Executive Summary", "Discussion", "Key Decisions", "Action Items", "Body"]:
        if sections.get(key):
            blocks.append(_section_block("Notes" if key == "Body" else key, sections[key]))
    if not blocks:
        blocks.append(_section_block("Notes", summary_text))
    blocks.append(_signature_block(sender_name, signature_text))
    return _layout("Meeting Notes", meeting_title, "".join(blocks))

def compose_meeting_email_parts(*, meeting_title: str, summary_text: str,
                                sender_name: Optional[str] = None,
                                signature_text: Optional[str] = None) -> Tuple[str, str, str]:
    """
    Returns: (subject, plain_text, html)
    The user's name and signature close both parts when set.
    """
    subject = f"Meeting Notes: {meeting_title}"
    text = (
        f"{BRAND_NAME} | Meeting Notes\n\nTitle: {meeting_title}\n\n{summary_text}\n"
        f"{_signature_text(sender_name, signature_text)}"
    )
    html_body = render_meeting_notes_email_html(
        meeting_title=meeting_title, summary_text=summary_text,
        sender_name=sender_name, signature_text=signature_text,
    )
    return subject, text, html_body

def compose_reset_code_email(code: str, ttl_minutes: int) -> Tuple[str, str, str]:
    subject = f"{BRAND_NAME} password reset code: {code}"
    text = (
        f"Your verification code is {code}.\n\n"
        f"It expires in {ttl_minutes} minutes. If you did not ask to reset your password, ignore this email."
    )
    body = (
        "<p style='font-size:14px;color:#374151'>Use this code to reset your password:</p>"
        f"<p style='font-size:32px;font-weight:700;letter-spacing:8px;color:#111;margin:16px 0'>{html.escape(code)}</p>"
        f"<p style='font-size:13px;color:#6b7280'>The code expires in {ttl_minutes} minutes. "
        "If you did not ask to reset your password, ignore this email.</p>"
    )
    return subject, text, _layout("Password reset", "Verification code", body)

def support_category_label(category: Optional[str]) -> str:
    return SUPPORT_CATEGORY_LABELS.get(category or "", category or SUPPORT_CATEGORY_LABELS["other"])

def compose_support_ticket_email(*, ticket_id: Optional[int], name: str, email: str, category: Optional[str],
                                 subject: str, message: str, screenshots: Optional[List[str]] = None) -> Tuple[str, str, str]:
    label = support_category_label(category)
    mail_subject = f"[Ticket #{ticket_id}] {label} - {subject}" if ticket_id else f"[Support] {label} - {subject}"

    shots = ""
    if screenshots:
        links = "".join(
            f"<a href='{html.escape(url)}' style='display:inline-block;background:#f3f4f6;color:#374151;"
            f"padding:8px 12px;border-radius:6px;text-decoration:none;font-size:13px;margin:4px 4px 4px 0'>"
            f"Screenshot {i}</a>"
            for i, url in enumerate(screenshots, start=1)
        )
        shots = _label(f"Attachments ({len(screenshots)})") + links

    body = (
        _label("Client")
        + f"<p style='font-size:16px;font-weight:600;color:#111;margin:0'>{html.escape(name)}</p>"
        + f"<a href='mailto:{html.escape(email)}' style='color:{BRAND_PRIMARY_COLOR};font-size:14px'>{html.escape(email)}</a>"
        + _label("Category")
        + f"<span style='background:#FFF7ED;color:#C2410C;padding:6px 12px;border-radius:6px;font-size:12px;font-weight:600'>{html.escape(label)}</span>"
        + _label("Subject")
        + f"<p style='font-size:16px;font-weight:600;color:#111;margin:0'>{html.escape(subject)}</p>"
        + _label("Message")
        + f"<p style='white-space:pre-wrap;background:#f9fafb;padding:16px;border-left:3px solid {BRAND_PRIMARY_COLOR};"
          f"font-size:14px;color:#374151;margin:0'>{html.escape(message)}</p>"
        + shots
        + "<p style='margin-top:24px'>"
        + _cta_button(f"mailto:{email}?subject={quote('Re: ' + subject)}", "Reply to client")
        + "</p>"
    )
    text = f"Ticket #{ticket_id or '-'} from {name} <{email}>\nCategory: {label}\nSubject: {subject}\n\n{message}\n"
    return mail_subject, text, _layout("New ticket", f"#{ticket_id}" if ticket_id else label, body)

def compose_support_auto_reply(*, name: Optional[str], ticket_id: Optional[int]) -> Tuple[str, str, str]:
    subject = f"Your support request #{ticket_id} was received" if ticket_id else "Your support request was received"
    greeting = f"Hello {name}," if name else "Hello,"
    text = (
        f"{greeting}\n\nThanks for contacting {BRAND_NAME} support. "
        "We received your request and will get back to you as soon as possible.\n"
    )
    body = (
        f"<p style='font-size:14px;color:#374151'>{html.escape(greeting)}</p>"
        f"<p style='font-size:14px;color:#374151'>Thanks for contacting {html.escape(BRAND_NAME)} support. "
        "We received your request and will get back to you as soon as possible.</p>"
    )
    if ticket_id:
        body += f"<p style='font-size:13px;color:#6b7280'>Ticket reference: <b>#{ticket_id}</b></p>"
    return subject, text, _layout("Request received", "Support", body)
