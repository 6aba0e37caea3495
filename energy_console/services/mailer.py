# energy_console/services/mailer.py
import logging
import math
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from energy_console.background import run_sync
from energy_console.database import async_session_maker
from energy_console.models import Lead
from energy_console.routes_shared import templates
from energy_console.services.calculations import format_currency, format_number
from energy_console.services.email_templates import lead_shortcode_context, render_email_template, template_for_category
from energy_console.services.values import to_float
from energy_console.settings.config import settings

logger = logging.getLogger(__name__)

CUSTOMER_SUBJECT = f"Säästölaskurin tulokset - {settings.COMPANY_NAME}"


def send_email(
    to_email: str,
    subject: str,
    text_body: str,
    html_body: Optional[str] = None,
    reply_to: Optional[str] = None,
) -> bool:
    """
    Sends an email using SMTP or 'dummy' transport (logs only).
    Uses STARTTLS/SSL based on settings; logs in if SMTP_USERNAME is provided.
    Keeps From == authenticated user for Gmail; puts branded address in Reply-To.
    """
    transport = (settings.EMAIL_TRANSPORT or "smtp").lower()

    if transport == "dummy":
        logger.info("Dummy email (not sent) to=%s subject=%s\n%s", to_email, subject, text_body)
        return True

    from_addr = (settings.SMTP_FROM or settings.SMTP_USERNAME or "").strip()
    # Gmail enforces From to match the authenticated account; push branded address into Reply-To
    if settings.SMTP_USERNAME and from_addr and from_addr.lower() != settings.SMTP_USERNAME.lower():
        if not reply_to:
            reply_to = from_addr
        from_addr = settings.SMTP_USERNAME

    msg = MIMEMultipart("alternative")
    msg["From"] = from_addr
    msg["To"] = to_email
    msg["Subject"] = subject
    if reply_to:
        msg["Reply-To"] = reply_to
    msg.attach(MIMEText(text_body or "", "plain", "utf-8"))
    if html_body:
        msg.attach(MIMEText(html_body, "html", "utf-8"))

    host = settings.SMTP_HOST
    port = int(settings.SMTP_PORT or 587)
    try:
        if settings.SMTP_USE_SSL:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(host, port, context=context, timeout=30) as s:
                if settings.SMTP_USERNAME:
                    s.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD or "")
                s.sendmail(from_addr, [to_email], msg.as_string())
        else:
            with smtplib.SMTP(host, port, timeout=30) as s:
                s.ehlo()
                if settings.SMTP_USE_TLS:
                    s.starttls(context=ssl.create_default_context())
                    s.ehlo()
                if settings.SMTP_USERNAME:
                    s.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD or "")
                s.sendmail(from_addr, [to_email], msg.as_string())
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error("SMTP error sending to %s: %s", to_email, e)
        return False


def _flat(lead: Lead) -> dict:
    return {**(lead.form_data or {}), **(lead.calculation_results or {})}


def lead_score(lead: Lead) -> str:
    """Rough sales priority: high, medium or low."""
    flat = _flat(lead)
    score = 0

    savings = to_float(flat.get("annual_savings"), 0.0) or 0.0
    if savings >= 2000:
        score += 40
    elif savings >= 1000:
        score += 25
    elif savings >= 500:
        score += 15

    area = to_float(flat.get("neliot"), 0.0) or 0.0
    if area >= 150:
        score += 20
    elif area >= 100:
        score += 15
    elif area >= 50:
        score += 10

    # null payback means the pump never pays back
    payback = to_float(flat.get("payback_period"))
    if payback is not None and math.isfinite(payback) and payback > 0:
        if payback <= 8:
            score += 20
        elif payback <= 12:
            score += 15
        elif payback <= 15:
            score += 10

    score += {"Oil": 10, "Electric": 8, "District": 5}.get(flat.get("lammitysmuoto"), 0)
    if flat.get("valittutukimuoto") in ("Phone", "Both"):
        score += 5
    if str(flat.get("message") or "").strip():
        score += 5

    if score >= 70:
        return "high"
    if score >= 40:
        return "medium"
    return "low"


def sales_subject(lead: Lead) -> str:
    savings = to_float((lead.calculation_results or {}).get("annual_savings"))
    savings_text = format_currency(savings) if savings is not None else "0 €"
    return f"New Lead: {lead.full_name} - {lead.city or 'Ei kaupunkia'} - Savings: {savings_text}/year"


def admin_url(lead_id: str) -> str:
    return f"{settings.BASE_URL.rstrip('/')}/admin?lead={lead_id}"


def _email_ctx(lead: Lead) -> dict:
    results = lead.calculation_results or {}
    payback = to_float(results.get("payback_period"))
    return {
        "lead": lead,
        "company_name": settings.COMPANY_NAME,
        "form_data": lead.form_data or {},
        "annual_savings": format_currency(to_float(results.get("annual_savings"))),
        "five_year_savings": format_currency(to_float(results.get("five_year_savings"))),
        "ten_year_savings": format_currency(to_float(results.get("ten_year_savings"))),
        "payback_years": format_number(payback) if payback is not None and math.isfinite(payback) else "–",
        "co2_reduction": format_number(to_float(results.get("co2_reduction"), 0.0) or 0.0, 0),
        "score": lead_score(lead),
        "admin_url": admin_url(lead.id),
    }


def render_customer_email(lead: Lead) -> tuple[str, str, str]:
    ctx = _email_ctx(lead)
    text = templates.get_template("email/customer_results.txt").render(ctx)
    html = templates.get_template("email/customer_results.html").render(ctx)
    return CUSTOMER_SUBJECT, text, html


def render_sales_email(lead: Lead) -> tuple[str, str, str]:
    ctx = _email_ctx(lead)
    text = templates.get_template("email/sales_notification.txt").render(ctx)
    html = templates.get_template("email/sales_notification.html").render(ctx)
    return sales_subject(lead), text, html


async def send_lead_emails(db: AsyncSession, lead: Lead) -> dict:
    """Customer results + sales notification. Failures are collected, never raised."""
    results: dict = {"customer_email": False, "sales_email": False, "errors": []}

    custom = await template_for_category(db, "results")
    if custom is not None:
        subject, html = await render_email_template(db, custom, lead_shortcode_context(lead))
        _, text, _ = render_customer_email(lead)
    else:
        subject, text, html = render_customer_email(lead)
    if lead.email:
        results["customer_email"] = await run_sync(send_email, lead.email, subject, text, html)
        if not results["customer_email"]:
            results["errors"].append("Customer email failed")

    if settings.SALES_NOTIFICATION_EMAIL:
        subject, text, html = render_sales_email(lead)
        results["sales_email"] = await run_sync(
            send_email, settings.SALES_NOTIFICATION_EMAIL, subject, text, html, lead.email or None
        )
        if not results["sales_email"]:
            results["errors"].append("Sales email failed")
    else:
        logger.info("SALES_NOTIFICATION_EMAIL not set; skipping sales notification for lead %s", lead.id)

    if results["errors"]:
        logger.warning("Lead %s email problems: %s", lead.id, "; ".join(results["errors"]))
    return results


async def notify_new_lead(lead_id: str) -> None:
    """Background job run after a submission; opens its own session."""
    async with async_session_maker() as session:
        lead = await session.get(Lead, lead_id)
        if lead is None:
            logger.debug("notify_new_lead: lead %s not found", lead_id)
            return
        await send_lead_emails(session, lead)
