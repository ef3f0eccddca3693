"""
templates.py — Severity × channel message templates and token substitution.

═══════════════════════════════════════════════════════════════════════════
TEMPLATE TABLE
═══════════════════════════════════════════════════════════════════════════

                push                 sms                  email
    critical    title + body         evacuation text      subject/text/HTML
    high        title + body         restricted access    subject/text/HTML
    medium      title + body         monitoring           subject/text/HTML
    low         title + body         advisory             subject/text/HTML

    Unknown severities render with the medium row.

═══════════════════════════════════════════════════════════════════════════
TOKENS
═══════════════════════════════════════════════════════════════════════════

    {zoneName}            alert.zone_name
    {riskScore}           alert.risk_score, 1 decimal
    {riskProbability}     alert.risk_probability as "82%", or "N/A"
    {timestamp}           alert.timestamp in the site time zone
    {recommendedActions}  one "• action" line per recommended action
    {alertId}             alert.id
    {predictedTimeline}   alert.predicted_timeline, or "Unknown"
    {emergencyContact}    configured contact (critical email)

Substitution only replaces known tokens; anything else in braces is left
as written. HTML bodies get every value HTML-escaped. No length limits
are applied here; SMS segmenting and push payload caps belong to the
channel providers.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from backend.app.alerts.models import Alert, Channel, RenderedMessage, Severity

_TOKEN_RE = re.compile(r"\{(\w+)\}")

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M %Z"


@dataclass(frozen=True)
class MessageTemplate:
    """One cell of the table. ``title`` is the email subject for email."""
    body: str
    title: Optional[str] = None
    html: Optional[str] = None


# Handset vibration pattern (ms on/off) carried in push data
VIBRATION_PATTERNS: Dict[Severity, Tuple[int, ...]] = {
    Severity.CRITICAL: (200, 100, 200, 100, 200, 100, 200),
    Severity.HIGH: (300, 200, 300),
    Severity.MEDIUM: (200, 100, 200),
    Severity.LOW: (100, 50, 100),
}


def _email_html(
    *,
    accent: str,
    tint: str,
    icon: str,
    headline: str,
    notice: str,
    notice_detail: str,
    actions_heading: str,
    contact_block: str = "",
) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><title>{headline}</title></head>
<body style="margin:0;padding:0;background-color:#f3f4f6;font-family:'Segoe UI',Tahoma,sans-serif;">
  <div style="max-width:600px;margin:0 auto;background-color:#ffffff;">
    <div style="background:{accent};color:#ffffff;padding:28px 20px;text-align:center;">
      <div style="font-size:40px;">{icon}</div>
      <h1 style="margin:0;font-size:26px;">{headline}</h1>
      <h2 style="margin:12px 0 0 0;font-size:20px;">Zone: {{zoneName}}</h2>
    </div>
    <div style="padding:28px 20px;">
      <div style="background:{tint};border:2px solid {accent};border-radius:8px;padding:18px;margin-bottom:22px;text-align:center;">
        <h3 style="margin:0 0 8px 0;color:{accent};">{notice}</h3>
        <p style="margin:0;">{notice_detail}</p>
      </div>
      <table style="width:100%;margin-bottom:22px;">
        <tr><td><strong>Risk Score:</strong></td><td>{{riskScore}}/10</td></tr>
        <tr><td><strong>Probability:</strong></td><td>{{riskProbability}}</td></tr>
        <tr><td><strong>Expected Timeline:</strong></td><td>{{predictedTimeline}}</td></tr>
        <tr><td><strong>Alert Time:</strong></td><td>{{timestamp}}</td></tr>
      </table>
      <div style="border-left:5px solid {accent};padding:16px 20px;margin-bottom:22px;">
        <h3 style="margin:0 0 12px 0;">{actions_heading}</h3>
        <div style="line-height:1.6;">{{recommendedActions}}</div>
      </div>
      {contact_block}
      <p style="color:#6b7280;font-size:12px;">Alert ID: {{alertId}}</p>
    </div>
  </div>
</body>
</html>"""


_CRITICAL_CONTACT_BLOCK = (
    '<div style="background:#eff6ff;border-radius:8px;padding:18px;margin-bottom:22px;">'
    '<h3 style="margin:0 0 10px 0;color:#1e40af;">📞 Emergency Contacts</h3>'
    "<p style=\"margin:0;\">{emergencyContact}</p></div>"
)


TEMPLATES: Dict[Severity, Dict[Channel, MessageTemplate]] = {
    Severity.CRITICAL: {
        Channel.PUSH: MessageTemplate(
            title="🚨 CRITICAL ALERT: Immediate Action Required",
            body="Rockfall risk detected in {zoneName}. EVACUATE IMMEDIATELY!",
        ),
        Channel.SMS: MessageTemplate(
            body=(
                "🚨 CRITICAL ALERT - {zoneName}\n\n"
                "IMMEDIATE EVACUATION REQUIRED!\n\n"
                "Risk Score: {riskScore}/10\n"
                "Probability: {riskProbability}\n"
                "Time: {timestamp}\n\n"
                "This is NOT a drill. Follow emergency protocols immediately.\n\n"
                "Alert ID: {alertId}"
            ),
        ),
        Channel.EMAIL: MessageTemplate(
            title="🚨 CRITICAL ROCKFALL ALERT - Immediate Evacuation Required - {zoneName}",
            body=(
                "CRITICAL ROCKFALL ALERT - {zoneName}: Risk {riskScore}/10, "
                "Probability {riskProbability}. IMMEDIATE EVACUATION REQUIRED. "
                "Follow emergency protocols.\n\n"
                "Actions:\n{recommendedActions}\n\n"
                "Emergency contact: {emergencyContact}\n"
                "Time: {timestamp}\nAlert ID: {alertId}"
            ),
            html=_email_html(
                accent="#dc2626",
                tint="#fef2f2",
                icon="🚨",
                headline="CRITICAL ROCKFALL ALERT",
                notice="⚡ IMMEDIATE EVACUATION REQUIRED ⚡",
                notice_detail="This is not a drill. Follow emergency protocols immediately.",
                actions_heading="🔧 IMMEDIATE ACTIONS REQUIRED:",
                contact_block=_CRITICAL_CONTACT_BLOCK,
            ),
        ),
    },
    Severity.HIGH: {
        Channel.PUSH: MessageTemplate(
            title="⚠️ HIGH RISK ALERT: {zoneName}",
            body="Elevated rockfall risk detected. Restrict access to essential personnel.",
        ),
        Channel.SMS: MessageTemplate(
            body=(
                "⚠️ HIGH RISK ALERT - {zoneName}\n\n"
                "Elevated rockfall risk detected.\n\n"
                "Risk Score: {riskScore}/10\n"
                "Probability: {riskProbability}\n"
                "Time: {timestamp}\n\n"
                "Action Required:\n{recommendedActions}\n\n"
                "Alert ID: {alertId}"
            ),
        ),
        Channel.EMAIL: MessageTemplate(
            title="⚠️ HIGH RISK ALERT - Enhanced Safety Protocols Required - {zoneName}",
            body=(
                "HIGH RISK ALERT - {zoneName}: Risk {riskScore}/10, "
                "Probability {riskProbability}. Restrict access to essential "
                "personnel. Enhanced safety protocols required.\n\n"
                "Actions:\n{recommendedActions}\n\n"
                "Time: {timestamp}\nAlert ID: {alertId}"
            ),
            html=_email_html(
                accent="#ea580c",
                tint="#fff7ed",
                icon="⚠️",
                headline="HIGH RISK ROCKFALL ALERT",
                notice="Restrict access to essential personnel only",
                notice_detail="Enhanced safety protocols are in effect for this zone.",
                actions_heading="Required Actions:",
            ),
        ),
    },
    Severity.MEDIUM: {
        Channel.PUSH: MessageTemplate(
            title="📊 MONITORING ALERT: {zoneName}",
            body="Increased monitoring recommended. Risk Score: {riskScore}/10",
        ),
        Channel.SMS: MessageTemplate(
            body=(
                "📊 MONITORING ALERT - {zoneName}\n\n"
                "Increased monitoring recommended.\n\n"
                "Risk Score: {riskScore}/10\n"
                "Probability: {riskProbability}\n"
                "Time: {timestamp}\n\n"
                "Recommended Actions:\n{recommendedActions}\n\n"
                "Alert ID: {alertId}"
            ),
        ),
        Channel.EMAIL: MessageTemplate(
            title="📊 MONITORING ALERT - Enhanced Surveillance Required - {zoneName}",
            body=(
                "MONITORING ALERT - {zoneName}: Risk {riskScore}/10, "
                "Probability {riskProbability}. Increase monitoring frequency "
                "and review safety procedures.\n\n"
                "Recommended actions:\n{recommendedActions}\n\n"
                "Time: {timestamp}\nAlert ID: {alertId}"
            ),
            html=_email_html(
                accent="#ca8a04",
                tint="#fefce8",
                icon="📊",
                headline="ROCKFALL MONITORING ALERT",
                notice="Enhanced surveillance required",
                notice_detail="Increase monitoring frequency and review safety procedures.",
                actions_heading="Recommended Actions:",
            ),
        ),
    },
    Severity.LOW: {
        Channel.PUSH: MessageTemplate(
            title="📋 ADVISORY: {zoneName}",
            body="Low-level activity detected. Continue normal operations with awareness.",
        ),
        Channel.SMS: MessageTemplate(
            body=(
                "📋 ADVISORY - {zoneName}\n\n"
                "Low-level rockfall activity detected.\n\n"
                "Risk Score: {riskScore}/10\n"
                "Probability: {riskProbability}\n"
                "Time: {timestamp}\n\n"
                "Continue normal operations with increased awareness.\n\n"
                "Alert ID: {alertId}"
            ),
        ),
        Channel.EMAIL: MessageTemplate(
            title="📋 ADVISORY NOTICE - Low-Level Activity Detected - {zoneName}",
            body=(
                "ADVISORY - {zoneName}: Risk {riskScore}/10, Probability "
                "{riskProbability}. Low-level activity detected. Continue normal "
                "operations with awareness.\n\n"
                "{recommendedActions}\n\n"
                "Time: {timestamp}\nAlert ID: {alertId}"
            ),
            html=_email_html(
                accent="#2563eb",
                tint="#eff6ff",
                icon="📋",
                headline="ROCKFALL ADVISORY NOTICE",
                notice="Low-level activity detected",
                notice_detail="Continue normal operations with increased awareness.",
                actions_heading="Notes:",
            ),
        ),
    },
}


# ═══════════════════════════════════════════════════════════════════════════
# Substitution
# ═══════════════════════════════════════════════════════════════════════════

def substitute(template: str, values: Mapping[str, str]) -> str:
    """Replace ``{token}`` for every known token; leave the rest untouched."""
    return _TOKEN_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)


def _format_probability(probability: Optional[float]) -> str:
    if probability is None:
        return "N/A"
    return f"{round(probability * 100)}%"


class TemplateEngine:
    """Renders the table for a typed Alert. Total and side-effect free."""

    def __init__(
        self,
        timezone_name: str = "UTC",
        emergency_contact: str = "Mine Safety Office",
        templates: Optional[Dict[Severity, Dict[Channel, MessageTemplate]]] = None,
    ):
        self._tz = ZoneInfo(timezone_name)
        self._emergency_contact = emergency_contact
        self._templates = templates or TEMPLATES

    def token_values(self, alert: Alert) -> Dict[str, str]:
        """Plain-text value of every token for ``alert``."""
        actions = alert.recommended_actions or ()
        return {
            "zoneName": alert.zone_name or "Unknown Zone",
            "riskScore": f"{alert.risk_score:.1f}",
            "riskProbability": _format_probability(alert.risk_probability),
            "timestamp": alert.timestamp.astimezone(self._tz).strftime(TIMESTAMP_FORMAT),
            "recommendedActions": "\n".join(f"• {a}" for a in actions),
            "alertId": alert.id,
            "predictedTimeline": alert.predicted_timeline or "Unknown",
            "emergencyContact": self._emergency_contact,
        }

    def template_for(
        self,
        severity: Union[Severity, str, None],
        channel: Channel,
    ) -> MessageTemplate:
        tier = Severity.coerce(severity, Severity.MEDIUM)
        row = self._templates.get(tier) or self._templates[Severity.MEDIUM]
        return row[Channel(channel)]

    def render(
        self,
        severity: Union[Severity, str, None],
        channel: Channel,
        alert: Alert,
    ) -> RenderedMessage:
        channel = Channel(channel)
        tier = Severity.coerce(severity, Severity.MEDIUM)
        template = self.template_for(tier, channel)
        values = self.token_values(alert)

        rendered_html = None
        if template.html:
            escaped = {k: html.escape(v) for k, v in values.items()}
            escaped["recommendedActions"] = "<br>\n".join(
                html.escape(f"• {a}") for a in alert.recommended_actions
            )
            rendered_html = substitute(template.html, escaped)

        data: Dict[str, object] = {}
        if channel == Channel.PUSH:
            data = {
                "alertId": alert.id,
                "severity": tier.value,
                "zoneId": alert.zone_id,
                "timestamp": alert.timestamp.isoformat(),
                "vibrationPattern": list(VIBRATION_PATTERNS[tier]),
            }

        return RenderedMessage(
            title=substitute(template.title, values) if template.title else None,
            body=substitute(template.body, values),
            html=rendered_html,
            data=data,
        )


_default_engine = TemplateEngine()


def render(
    severity: Union[Severity, str, None],
    channel: Channel,
    alert: Alert,
) -> RenderedMessage:
    """Render with the default engine (UTC, default contact)."""
    return _default_engine.render(severity, channel, alert)
