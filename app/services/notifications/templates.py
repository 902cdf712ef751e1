"""
Email body templates.

Bodies are Jinja2 templates keyed by email type; an unknown template name
falls back to ``general``. Every template receives the job's ``data``
plus ``restaurant_name``, ``app_base_url`` and ``subject``.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from jinja2 import DictLoader, Environment, TemplateNotFound, select_autoescape

logger = logging.getLogger(__name__)

_LAYOUT = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h1 style="color: #ff4757;">{% block title %}{{ subject }}{% endblock %}</h1>
  {% block body %}{% endblock %}
  <p style="color: #666; font-size: 12px;">{{ restaurant_name }}</p>
</div>
"""

_TEMPLATES: Dict[str, str] = {
    "layout.html": _LAYOUT,
    "order-confirmation.html": """\
{% extends "layout.html" %}
{% block title %}Order Confirmed!{% endblock %}
{% block body %}
<p>Hi {{ customer_name or "there" }},</p>
<p>Your order <strong>#{{ order_number }}</strong> has been confirmed.</p>
{% if estimated_time %}<p>Estimated ready time: {{ estimated_time }} minutes.</p>{% endif %}
{% if total %}<p>Total: <strong>{{ total }}</strong></p>{% endif %}
<p>Thank you for ordering from {{ restaurant_name }}!</p>
{% endblock %}
""",
    "reservation-confirmation.html": """\
{% extends "layout.html" %}
{% block title %}Reservation Confirmed{% endblock %}
{% block body %}
<p>Your reservation{% if reservation_number %} <strong>{{ reservation_number }}</strong>{% endif %}
at {{ restaurant_name }} is confirmed for {{ date }} at {{ time }} for {{ party_size }} guests.</p>
{% endblock %}
""",
    "reservation-reminder.html": """\
{% extends "layout.html" %}
{% block title %}See you soon{% endblock %}
{% block body %}
<p>Reminder: your reservation at {{ restaurant_name }} is on {{ date }} at {{ time }}
for {{ party_size }} guests.</p>
{% endblock %}
""",
    "waitlist-notification.html": """\
{% extends "layout.html" %}
{% block title %}Your table is ready{% endblock %}
{% block body %}
<p>Hi {{ guest_name or "there" }}! Your table at {{ restaurant_name }} is ready.
Please proceed to the host stand within 10 minutes.</p>
{% endblock %}
""",
    "password-reset.html": """\
{% extends "layout.html" %}
{% block body %}
<p>Your password reset code is <strong>{{ code }}</strong>. It expires in 15 minutes.</p>
{% if reset_url %}<p><a href="{{ reset_url }}">Reset your password</a></p>{% endif %}
{% endblock %}
""",
    "verification.html": """\
{% extends "layout.html" %}
{% block body %}
<p>Your verification code is <strong>{{ code }}</strong>. It expires in 10 minutes.</p>
{% endblock %}
""",
    "report-ready.html": """\
{% extends "layout.html" %}
{% block title %}Your report is ready{% endblock %}
{% block body %}
<p>The {{ report_type }} report{% if date_from %} for {{ date_from }} to {{ date_to }}{% endif %} has been generated.</p>
{% if file_name %}<p>File: {{ file_name }} ({{ rows }} rows)</p>{% endif %}
{% endblock %}
""",
    "general.html": """\
{% extends "layout.html" %}
{% block body %}
<p>{{ message or "" }}</p>
{% endblock %}
""",
}


@dataclass
class RenderedEmail:
    html: str
    text: str


class EmailRenderer:
    """Renders email bodies from the built-in Jinja2 templates."""

    def __init__(self, restaurant_name: str, app_base_url: str, templates: Optional[Dict[str, str]] = None):
        self.restaurant_name = restaurant_name
        self.app_base_url = app_base_url
        self.env = Environment(
            loader=DictLoader({**_TEMPLATES, **(templates or {})}),
            autoescape=select_autoescape(default=True),
        )

    def render(self, template: str, subject: str, data: Dict[str, Any]) -> RenderedEmail:
        context = {
            **data,
            "subject": subject,
            "restaurant_name": self.restaurant_name,
            "app_base_url": self.app_base_url,
        }
        try:
            tmpl = self.env.get_template(f"{template}.html")
        except TemplateNotFound:
            logger.debug(f"No email template '{template}', using general")
            tmpl = self.env.get_template("general.html")

        html = tmpl.render(**context)
        text = data.get("message") or subject
        return RenderedEmail(html=html, text=str(text))
