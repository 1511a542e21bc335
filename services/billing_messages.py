# services/billing_messages.py
"""
Localised copy for the billing emails and in-app notifications.

Only English and Lithuanian are supported; any other language code falls back
to English.
"""
from datetime import datetime
from html import escape
from typing import Tuple

from models.models import Language

APP_NAME = "TaskMaster"


def normalize_language(language: str) -> str:
    return Language.LT.value if language == Language.LT.value else Language.EN.value


def format_end_date(value: datetime, language: str) -> str:
    if normalize_language(language) == Language.LT.value:
        return value.date().isoformat()
    return f"{value.month}/{value.day}/{value.year}"


def _layout(heading: str, body: str, cta: str, cta_url: str, accent: str = "#6366f1", callout: str = "") -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background-color: #0f0f0f; margin: 0; padding: 40px 20px;">
      <div style="max-width: 560px; margin: 0 auto; background: #1a1a1a; border-radius: 12px; padding: 40px; border: 1px solid #2a2a2a;">
        <h1 style="color: #6366f1; font-size: 28px; margin: 0 0 32px; text-align: center;">{APP_NAME}</h1>
        <h2 style="color: #ffffff; font-size: 24px; margin: 0 0 16px;">{heading}</h2>
        <p style="color: #a1a1aa; font-size: 16px; line-height: 1.6; margin: 0 0 24px;">{body}</p>
        {callout}
        <a href="{cta_url}" style="display: inline-block; background: {accent}; color: #000000; text-decoration: none; padding: 12px 24px; border-radius: 8px; font-weight: 600;">{cta}</a>
      </div>
    </body>
    </html>
    """


# ============================================================
# ⏰ Expiring soon (reminders)
# ============================================================
def expiring_email(
    user_name: str,
    plan_name: str,
    days_left: int,
    end_date: str,
    is_trial: bool,
    has_payment_method: bool,
    language: str,
    billing_url: str,
) -> Tuple[str, str]:
    """Returns (subject, html) for an expiry reminder."""
    user_name, plan_name = escape(user_name), escape(plan_name)
    if normalize_language(language) == Language.LT.value:
        kind = "bandomasis laikotarpis" if is_trial else "prenumerata"
        subject = (
            f"Bandomasis laikotarpis baigiasi po {days_left} d.!"
            if is_trial
            else f"Prenumerata baigiasi po {days_left} d."
        )
        heading = f"Sveiki, {user_name}"
        if has_payment_method:
            body = f"Jūsų {plan_name} {kind} baigiasi {end_date}. Mokėjimas bus automatiškai nuskaitytas."
            cta = "Peržiūrėti prenumeratą"
            note = "💳 Kortelė prijungta - bus automatiškai pratęsta"
        else:
            body = (
                f"Jūsų {plan_name} {kind} baigiasi {end_date}. "
                "Pridėkite mokėjimo būdą, kad išvengtumėte perėjimo į nemokamą planą."
            )
            cta = "Pridėti mokėjimo būdą"
            note = "⚠️ Nėra kortelės - būsite perkelti į nemokamą planą"
        left = "diena liko" if days_left == 1 else "dienos liko"
    else:
        kind = "trial" if is_trial else "subscription"
        subject = (
            f"Trial ending in {days_left} days!"
            if is_trial
            else f"Subscription expires in {days_left} days"
        )
        heading = f"Hi {user_name}"
        if has_payment_method:
            body = f"Your {plan_name} {kind} expires on {end_date}. Payment will be automatically charged."
            cta = "View Subscription"
            note = "💳 Card on file - will auto-renew"
        else:
            body = (
                f"Your {plan_name} {kind} expires on {end_date}. "
                "Add a payment method to avoid being moved to the free plan."
            )
            cta = "Add Payment Method"
            note = "⚠️ No card - will be downgraded to free"
        left = "day left" if days_left == 1 else "days left"

    # Red for the last day, amber otherwise
    accent = "#ef4444" if days_left <= 1 else "#f59e0b"
    callout = f"""
        <div style="background: {accent}20; border-radius: 8px; padding: 16px; margin-bottom: 24px; border-left: 4px solid {accent};">
          <p style="color: {accent}; font-weight: 600; margin: 0 0 8px;">{days_left} {left}</p>
          <p style="color: #a1a1aa; font-size: 14px; margin: 0;">{note}</p>
        </div>
    """
    return subject, _layout(heading, body, cta, billing_url, accent=accent, callout=callout)


def expiring_notification(days_left: int, is_trial: bool, has_payment_method: bool, language: str) -> Tuple[str, str]:
    """Returns (title, body) for the in-app reminder."""
    if normalize_language(language) == Language.LT.value:
        when = "rytoj" if days_left == 1 else f"po {days_left} dienų"
        title = (
            f"Bandomasis laikotarpis baigiasi {when}" if is_trial else f"Prenumerata baigiasi {when}"
        )
        body = "Mokėjimas bus automatiškai nuskaitytas." if has_payment_method else "Pridėkite mokėjimo būdą."
    else:
        when = "tomorrow" if days_left == 1 else f"in {days_left} days"
        title = f"Trial ending {when}" if is_trial else f"Subscription ending {when}"
        body = "Payment will be automatically charged." if has_payment_method else "Add a payment method."
    return title, body


# ============================================================
# ⛔ Expired (sweep downgrade)
# ============================================================
def expired_email(user_name: str, plan_name: str, was_trial: bool, language: str, billing_url: str) -> Tuple[str, str]:
    user_name, plan_name = escape(user_name), escape(plan_name)
    if normalize_language(language) == Language.LT.value:
        heading = f"Sveiki, {user_name}"
        cta = "Prenumeruoti dabar"
        if was_trial:
            subject = "Bandomasis laikotarpis baigėsi"
            body = (
                f"Jūsų {plan_name} bandomasis laikotarpis baigėsi. "
                "Prenumeruokite dabar, kad ir toliau naudotumėtės premium funkcijomis."
            )
        else:
            subject = "Jūsų prenumerata baigėsi"
            body = f"Jūsų {plan_name} prenumerata baigėsi ir buvote perkeltas į nemokamą planą."
    else:
        heading = f"Hi {user_name}"
        cta = "Subscribe Now"
        if was_trial:
            subject = "Your trial has ended"
            body = f"Your {plan_name} trial has ended. Subscribe now to continue enjoying premium features."
        else:
            subject = "Your subscription has expired"
            body = f"Your {plan_name} subscription has expired. You have been moved to the free plan."
    return subject, _layout(heading, body, cta, billing_url)


def expired_notification(plan_name: str, was_trial: bool, language: str) -> Tuple[str, str]:
    if normalize_language(language) == Language.LT.value:
        if was_trial:
            return (
                "Bandomasis laikotarpis baigėsi",
                "Jūsų bandomasis laikotarpis baigėsi. Dabar naudojate nemokamą planą.",
            )
        return (
            "Prenumerata baigėsi",
            f"Jūsų {plan_name} prenumerata baigėsi. Dabar naudojate nemokamą planą.",
        )
    if was_trial:
        return "Trial Period Ended", "Your trial period has ended. You are now on the free plan."
    return "Subscription Expired", f"Your {plan_name} subscription has expired. You are now on the free plan."


# ============================================================
# 🔔 Lifecycle (webhook-driven status / plan changes)
# ============================================================
def trial_started_email(
    user_name: str, plan_name: str, trial_days: int, end_date: str, language: str, dashboard_url: str
) -> Tuple[str, str]:
    name, plan = escape(user_name), escape(plan_name)
    if normalize_language(language) == Language.LT.value:
        subject = f"Jūsų {trial_days} dienų bandomasis laikotarpis prasidėjo!"
        heading = f"Sveiki, {name}!"
        body = (
            f"Jūsų {plan} bandomasis laikotarpis aktyvuotas. "
            f"Turite {trial_days} dienų išmėginti visas premium funkcijas nemokamai."
        )
        note = f"Bandomasis laikotarpis baigiasi: {end_date}"
        cta = "Pradėti naudotis"
    else:
        subject = f"Your {trial_days}-day trial has started!"
        heading = f"Welcome, {name}!"
        body = f"Your {plan} trial is now active. You have {trial_days} days to explore all premium features for free."
        note = f"Trial ends: {end_date}"
        cta = "Get Started"
    callout = f'<p style="color: #a1a1aa; font-size: 14px; margin: 0 0 24px;">{note}</p>'
    return subject, _layout(heading, body, cta, dashboard_url, callout=callout)


def subscription_purchased_email(
    user_name: str, plan_name: str, next_billing_date: str, language: str, billing_url: str
) -> Tuple[str, str]:
    name, plan = escape(user_name), escape(plan_name)
    if normalize_language(language) == Language.LT.value:
        subject = f"Prenumerata aktyvuota: {plan_name}"
        heading = f"Ačiū, {name}!"
        body = f"Jūsų {plan} prenumerata sėkmingai aktyvuota. Dabar turite prieigą prie visų premium funkcijų."
        details = f"Kitas mokėjimas: {next_billing_date}" if next_billing_date else ""
        cta = "Peržiūrėti prenumeratą"
    else:
        subject = f"Subscription activated: {plan_name}"
        heading = f"Thank you, {name}!"
        body = f"Your {plan} subscription has been successfully activated. You now have access to all premium features."
        details = f"Next billing: {next_billing_date}" if next_billing_date else ""
        cta = "View Subscription"
    callout = f'<p style="color: #a1a1aa; font-size: 14px; margin: 0 0 24px;">{details}</p>' if details else ""
    return subject, _layout(heading, body, cta, billing_url, accent="#22c55e", callout=callout)


def subscription_canceled_email(
    user_name: str, plan_name: str, end_date: str, language: str, billing_url: str
) -> Tuple[str, str]:
    name, plan = escape(user_name), escape(plan_name)
    if normalize_language(language) == Language.LT.value:
        subject = "Prenumerata atšaukta"
        heading = f"Sveiki, {name}"
        body = f"Jūsų {plan} prenumerata buvo atšaukta. Galite naudotis premium funkcijomis iki {end_date}."
        note = "Jei tai buvo klaida, galite bet kada atnaujinti prenumeratą."
        cta = "Atnaujinti prenumeratą"
    else:
        subject = "Subscription canceled"
        heading = f"Hi {name}"
        body = f"Your {plan} subscription has been canceled. You can continue using premium features until {end_date}."
        note = "If this was a mistake, you can resubscribe at any time."
        cta = "Resubscribe"
    callout = f'<p style="color: #a1a1aa; font-size: 14px; margin: 0 0 24px;">{note}</p>'
    return subject, _layout(heading, body, cta, billing_url, accent="#f59e0b", callout=callout)


def plan_changed_email(
    user_name: str, old_plan_name: str, new_plan_name: str, language: str, billing_url: str
) -> Tuple[str, str]:
    name, old_plan, new_plan = escape(user_name), escape(old_plan_name), escape(new_plan_name)
    if normalize_language(language) == Language.LT.value:
        subject = f"Prenumerata pakeista į {new_plan_name}"
        heading = f"Sveiki, {name}"
        body = f"Jūsų prenumerata sėkmingai pakeista iš {old_plan} į {new_plan}."
        cta = "Peržiūrėti pakeitimus"
    else:
        subject = f"Subscription changed to {new_plan_name}"
        heading = f"Hi {name}"
        body = f"Your subscription has been successfully changed from {old_plan} to {new_plan}."
        cta = "View Changes"
    return subject, _layout(heading, body, cta, billing_url)
