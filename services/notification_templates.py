"""Message templates for file notifications (Telegram HTML and email)"""

from html import escape
from typing import Dict

from models import FileStatus
from services.notification_events import FileEvent, FileEventKind

STATUS_EMOJI = {
    FileStatus.RECEIVED: "📥",
    FileStatus.PENDING: "⏳",
    FileStatus.READY: "✅",
}

STATUS_LABEL = {
    FileStatus.RECEIVED: "Received",
    FileStatus.PENDING: "In progress",
    FileStatus.READY: "Ready",
}

CURRENCY = "DA"


def _format_size(size) -> str:
    if not size:
        return "unknown size"
    return f"{size / (1024 * 1024):.2f} MB"


def format_price(price) -> str:
    return f"{price:,.0f} {CURRENCY}" if price is not None else "not set"


def _modifications_line(event: FileEvent) -> str:
    return ", ".join(event.modifications) if event.modifications else "No modifications"


def _status_lines(event: FileEvent, filename: str) -> list:
    emoji = STATUS_EMOJI[event.status]
    if event.status == FileStatus.RECEIVED:
        return [
            f"{emoji} <b>File received</b>",
            "",
            f"Your file <code>{filename}</code> has been received and is waiting for an engineer.",
        ]
    if event.status == FileStatus.PENDING:
        lines = [
            f"{emoji} <b>File in progress</b>",
            "",
            f"An engineer is working on <code>{filename}</code>.",
        ]
        if event.estimate_minutes:
            lines.append(f"Estimated processing time: <b>{event.estimate_minutes} minutes</b>.")
        return lines
    return [
        f"{emoji} <b>Your modified file is ready</b>",
        "",
        f"<code>{filename}</code> has been processed and can be downloaded now.",
    ]


def render_customer_message(event: FileEvent) -> str:
    filename = escape(event.filename)

    if event.kind == FileEventKind.PRICE_SET:
        lines = [
            "💰 <b>Price set</b>",
            "",
            f"The price for <code>{filename}</code> is <b>{format_price(event.price)}</b>.",
        ]
    elif event.kind == FileEventKind.PAYMENT_CONFIRMED:
        lines = [
            "💳 <b>Payment confirmed</b>",
            "",
            f"We received your payment for <code>{filename}</code>.",
        ]
    elif event.kind == FileEventKind.ADMIN_NOTE:
        lines = [
            "📝 <b>New comment from our team</b>",
            "",
            f"About <code>{filename}</code>:",
            f"<i>{escape(event.admin_note or '')}</i>",
        ]
    else:
        lines = _status_lines(event, filename)

    if event.url:
        lines.extend(["", f'<a href="{escape(event.url, quote=True)}">Open your file</a>'])
    return "\n".join(lines)


def render_operator_message(event: FileEvent) -> str:
    if event.kind == FileEventKind.ADMIN_NOTE:
        header = f"📝 <b>Admin notes updated by {escape(event.actor_name or 'an admin')}</b>"
    else:
        transition = STATUS_LABEL[event.status]
        if event.previous_status is not None:
            transition = f"{STATUS_LABEL[event.previous_status]} → {STATUS_LABEL[event.status]}"
        header = f"{STATUS_EMOJI[event.status]} <b>Tuning file: {transition}</b>"

    lines = [
        header,
        "",
        f"📄 <b>File:</b> <code>{escape(event.filename)}</code> ({_format_size(event.file_size)})",
        f"👤 <b>Customer:</b> {escape(event.customer_name or str(event.customer_id))}",
        f"🔧 <b>Modifications:</b> {escape(_modifications_line(event))}",
    ]
    if event.customer_email:
        lines.append(f"📧 <b>Email:</b> {escape(event.customer_email)}")
    if event.estimate_minutes:
        lines.append(f"⏱ <b>Estimate:</b> {event.estimate_minutes} min")
    if event.customer_comment:
        lines.append(f"💬 <b>Comment:</b> {escape(event.customer_comment)}")
    if event.kind == FileEventKind.ADMIN_NOTE:
        lines.append(f"📝 <b>Notes:</b> {escape(event.admin_note or '(cleared)')}")
    lines.append(f"🆔 <code>{event.file_id}</code>")
    return "\n".join(lines)


def _email(event: FileEvent, site_name: str, heading: str, body_html: str, body_text: str, link_label: str):
    name = escape(event.customer_name or "there")
    button = ""
    text_link = ""
    if event.url:
        href = escape(event.url, quote=True)
        button = (
            f'<p><a href="{href}" style="background:#16a34a;color:#fff;padding:12px 20px;'
            f'border-radius:6px;text-decoration:none">{link_label}</a></p>'
        )
        text_link = f"\n{link_label}: {event.url}\n"

    html_content = f"""
    <html>
      <body style="font-family:Arial,sans-serif;color:#111">
        <h2>{heading}</h2>
        <p>Hello {name},</p>
        {body_html}
        {button}
        <p>Thank you for choosing {escape(site_name)}.</p>
      </body>
    </html>
    """
    text_content = (
        f"Hello {event.customer_name or 'there'},\n\n"
        f"{body_text}\n"
        f"{text_link}\n"
        f"Thank you for choosing {site_name}."
    )
    return html_content, text_content


def render_ready_email(event: FileEvent, site_name: str) -> Dict[str, str]:
    filename = escape(event.filename)
    html_content, text_content = _email(
        event,
        site_name,
        "✅ Your modified file is ready",
        f"<p>Your tuning file <strong>{filename}</strong> has been processed by our engineers.</p>"
        f"<p>Modifications: {escape(_modifications_line(event))}</p>",
        f"Your tuning file {event.filename} has been processed and is ready to download.\n"
        f"Modifications: {_modifications_line(event)}",
        "Download your file",
    )
    return {
        "subject": f"Your file {event.filename} is ready",
        "html_content": html_content,
        "text_content": text_content,
    }


def render_price_email(event: FileEvent, site_name: str) -> Dict[str, str]:
    price = format_price(event.price)
    html_content, text_content = _email(
        event,
        site_name,
        "💰 Price set for your file",
        f"<p>The price for <strong>{escape(event.filename)}</strong> is <strong>{price}</strong>.</p>",
        f"The price for {event.filename} is {price}.",
        "View your file",
    )
    return {
        "subject": f"Price set for {event.filename}: {price}",
        "html_content": html_content,
        "text_content": text_content,
    }


def render_payment_email(event: FileEvent, site_name: str) -> Dict[str, str]:
    html_content, text_content = _email(
        event,
        site_name,
        "💳 Payment confirmed",
        f"<p>We received your payment of <strong>{format_price(event.price)}</strong> "
        f"for <strong>{escape(event.filename)}</strong>.</p>",
        f"We received your payment of {format_price(event.price)} for {event.filename}.",
        "View your file",
    )
    return {
        "subject": f"Payment confirmed for {event.filename}",
        "html_content": html_content,
        "text_content": text_content,
    }


EMAIL_RENDERERS = {
    FileEventKind.STATUS: render_ready_email,
    FileEventKind.PRICE_SET: render_price_email,
    FileEventKind.PAYMENT_CONFIRMED: render_payment_email,
}
