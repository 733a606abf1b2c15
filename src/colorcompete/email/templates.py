"""
Built-in email templates for ColorCompete automations.

Templates are stored shapes ({subject, htmlContent, textContent}) with
{{placeholders}} rendered by colorcompete.email.interpolator, the same shape
admins edit on an EmailAutomation. They are used to seed the default
automations and as the fallback when an automation has no template.

All templates use inline CSS for maximum email client compatibility.
"""

from __future__ import annotations

# Color constants
BG_PAGE = "#F7F7FB"
BG_CARD = "#FFFFFF"
ACCENT = "#7C3AED"
SUCCESS = "#28A745"
SUCCESS_BG = "#E8F5E8"
TEXT_PRIMARY = "#1F2937"
TEXT_SECONDARY = "#6B7280"
BORDER = "#E5E7EB"


def _base_layout(content: str, app_name: str = "ColorCompete") -> str:
    """Wrap content in the base email layout with an unsubscribe footer."""
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{app_name}</title>
</head>
<body style="margin: 0; padding: 0; background-color: {BG_PAGE}; font-family: Arial, Helvetica, sans-serif;">
    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%" style="background-color: {BG_PAGE};">
        <tr>
            <td align="center" style="padding: 40px 20px;">
                <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="600" style="max-width: 600px; width: 100%;">
                    <tr>
                        <td align="center" style="padding-bottom: 24px;">
                            <span style="font-size: 24px; font-weight: 700; color: {ACCENT};">{app_name}</span>
                        </td>
                    </tr>
                    <tr>
                        <td style="background-color: {BG_CARD}; border: 1px solid {BORDER}; border-radius: 12px; padding: 36px 32px;">
                            {content}
                        </td>
                    </tr>
                    <tr>
                        <td align="center" style="padding-top: 24px;">
                            <p style="color: {TEXT_SECONDARY}; font-size: 12px; line-height: 1.5; margin: 0;">
                                You are receiving this email because you have a {app_name} account.<br>
                                {{{{#unsubscribe_url}}}}<a href="{{{{unsubscribe_url}}}}" style="color: {TEXT_SECONDARY};">Unsubscribe</a>{{{{/unsubscribe_url}}}}
                            </p>
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>"""


def _button(url: str, label: str, color: str = ACCENT) -> str:
    """Render a CTA button."""
    return f"""\
<table role="presentation" cellspacing="0" cellpadding="0" border="0" style="margin: 24px auto;">
    <tr>
        <td align="center" style="background-color: {color}; border-radius: 6px;">
            <a href="{url}" target="_blank" style="display: inline-block; padding: 14px 30px; color: #FFFFFF; font-size: 16px; font-weight: 600; text-decoration: none; border-radius: 6px;">
                {label}
            </a>
        </td>
    </tr>
</table>"""


def monthly_drawing_winner_template(tier_name: str, prize_amount: float | int) -> dict[str, str]:
    """Winner notice for a tier's monthly drawing."""
    content = f"""\
<h1 style="color: {SUCCESS}; font-size: 24px; text-align: center; margin: 0 0 16px 0;">You're a Winner!</h1>
<p style="color: {TEXT_PRIMARY}; font-size: 16px; line-height: 1.6;">
    Congratulations {{{{winner_name}}}}! You've won the {{{{tier_name}}}} tier monthly drawing for {{{{month_year}}}}!
</p>
<div style="background: {SUCCESS_BG}; padding: 24px; border-radius: 8px; margin: 20px 0; text-align: center;">
    <h2 style="margin-top: 0; color: {SUCCESS};">Prize: ${{{{prize_amount}}}} Gift Card</h2>
    {{{{#gift_card_code}}}}<p><strong>Gift Card Code:</strong> {{{{gift_card_code}}}}</p>{{{{/gift_card_code}}}}
    {{{{#redeem_url}}}}{_button("{{redeem_url}}", "Redeem Your Gift Card", SUCCESS)}{{{{/redeem_url}}}}
</div>
<p style="color: {TEXT_SECONDARY}; font-size: 14px; text-align: center;">
    Thank you for being a valued ColorCompete {{{{tier_name}}}} subscriber! Keep creating amazing art.
</p>
{_button("{{dashboard_url}}", "View Dashboard")}"""
    return {
        "subject": f"Congratulations! You won the {tier_name} Monthly Drawing - ${prize_amount} Gift Card!",
        "htmlContent": _base_layout(content),
        "textContent": (
            "Congratulations {{winner_name}}! You won ${{prize_amount}} in the {{tier_name}} "
            "monthly drawing for {{month_year}}. Gift card code: {{gift_card_code}}\n\n"
            "Redeem: {{redeem_url}}\n\n-- The ColorCompete Team"
        ),
    }


def monthly_drawing_participant_template() -> dict[str, str]:
    """Notice sent to every non-winning participant after a drawing completes."""
    content = f"""\
<h1 style="color: {TEXT_PRIMARY}; font-size: 22px; margin: 0 0 16px 0;">The {{{{month_year}}}} drawing is complete</h1>
<p style="color: {TEXT_PRIMARY}; font-size: 16px; line-height: 1.6;">Hi {{{{user_name}}}},</p>
<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6;">
    Thanks for entering the {{{{tier_name}}}} tier monthly drawing. This month's ${{{{prize_amount}}}} gift card
    went to {{{{winner_name}}}}, one of {{{{total_participants}}}} eligible subscribers.
</p>
<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6;">
    Keep your subscription active and you're automatically entered again next month.
</p>
{_button("{{dashboard_url}}", "Keep Creating")}"""
    return {
        "subject": "{{tier_name}} monthly drawing results for {{month_year}}",
        "htmlContent": _base_layout(content),
        "textContent": (
            "Hi {{user_name}},\n\n"
            "Thanks for entering the {{tier_name}} tier monthly drawing for {{month_year}}. "
            "This month's ${{prize_amount}} gift card went to {{winner_name}}. "
            "You're automatically entered again next month.\n\n"
            "{{dashboard_url}}\n\n-- The ColorCompete Team"
        ),
    }


def winner_reward_template() -> dict[str, str]:
    """Congratulations sent after a contest winner's gift card goes out."""
    content = f"""\
<h1 style="color: {TEXT_PRIMARY}; font-size: 24px; margin: 0 0 16px 0;">You won {{{{challenge_title}}}}!</h1>
<p style="color: {TEXT_PRIMARY}; font-size: 16px; line-height: 1.6;">Congratulations {{{{winner_name}}}},</p>
<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6;">
    The community picked your entry. A ${{{{reward_amount}}}} gift card is on its way to your inbox.
</p>
{{{{#submission_image}}}}<p style="text-align: center;"><img src="{{{{submission_image}}}}" alt="Winning entry" style="max-width: 100%; border-radius: 8px;"></p>{{{{/submission_image}}}}
{_button("{{dashboard_url}}", "View Dashboard")}"""
    return {
        "subject": "You won {{challenge_title}}! Your ${{reward_amount}} reward is here",
        "htmlContent": _base_layout(content),
        "textContent": (
            "Congratulations {{winner_name}}! Your entry won {{challenge_title}}. "
            "A ${{reward_amount}} gift card is on its way.\n\n-- The ColorCompete Team"
        ),
    }
