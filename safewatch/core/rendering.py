"""
HTML message bodies. Content differs only by recipient type: the operator sees
internal identifiers, a contact sees what to do next.
"""

from datetime import datetime, timezone
from html import escape
from typing import Optional

from safewatch.core.records import EmergencyContact, EmergencyRecord, LocationSample, Recipient, RecipientType


def _location_section(location: Optional[LocationSample]) -> str:
    if location is None:
        return (
            '<div style="background-color: #fef3c7; padding: 15px; border-left: 4px solid #f59e0b;">'
            '<h3 style="color: #92400e; margin-top: 0;">Location Status</h3>'
            '<p style="color: #92400e; margin: 0;">Location unavailable. '
            "GPS may be disabled or location tracking inactive.</p>"
            "</div>"
        )

    coords = f"{location.latitude:.6f},{location.longitude:.6f}"
    accuracy = f"&plusmn;{location.accuracy:.0f}m" if location.accuracy is not None else "unknown"
    return (
        '<div style="background-color: #fef2f2; padding: 20px; border-left: 4px solid #dc2626;">'
        '<h3 style="color: #dc2626; margin-top: 0;">EMERGENCY LOCATION</h3>'
        f"<p><strong>Coordinates:</strong> {location.latitude:.6f}, {location.longitude:.6f}</p>"
        f"<p><strong>Accuracy:</strong> {accuracy}</p>"
        f"<p><strong>Last Update:</strong> {location.updated_at.strftime('%Y-%m-%d %H:%M:%S %Z')}</p>"
        f'<p><a href="https://www.google.com/maps?q={coords}">Google Maps</a> | '
        f'<a href="https://maps.apple.com/?q={coords}">Apple Maps</a></p>'
        "</div>"
    )


def render_alert(recipient: Recipient, emergency: EmergencyRecord, location: Optional[LocationSample]) -> str:
    is_admin = recipient.type == RecipientType.ADMIN
    greeting = "SafeWatch Administrator" if is_admin else escape(recipient.name)
    breakdown = emergency.breakdown

    if is_admin:
        intro = "An emergency has been detected by the SafeWatch system."
        call_to_action = "Review emergency details and coordinate response if needed."
    else:
        intro = "The person who added you as an emergency contact may be in danger and needs immediate assistance."
        call_to_action = "Please check on this person immediately or contact emergency services if you cannot reach them."

    details = (
        f"<tr><td><strong>Confidence Level:</strong></td><td>{round(emergency.confidence)}%</td></tr>"
        f"<tr><td><strong>Detection Time:</strong></td>"
        f"<td>{emergency.created_at.strftime('%Y-%m-%d %H:%M:%S %Z')}</td></tr>"
        f"<tr><td><strong>Trigger:</strong></td><td>{'Manual alert' if emergency.manual else 'Automatic detection'}</td></tr>"
    )
    if is_admin:
        details = (
            f"<tr><td><strong>Emergency ID:</strong></td><td>{escape(emergency.id)}</td></tr>"
            + details
            + f"<tr><td><strong>User ID:</strong></td><td>{escape(emergency.user_id)}</td></tr>"
        )

    factors = ""
    if not breakdown.manual:
        factors = (
            "<h4>Detection Factors:</h4><ul>"
            f"<li>Sensor Score: {round(breakdown.sensor_score)}%</li>"
            f"<li>Context Score: {round(breakdown.context_score)}%</li>"
            f"<li>Location Score: {round(breakdown.location_score)}%</li>"
            f"<li>Crowd Score: {round(breakdown.crowd_score)}%</li>"
            "</ul>"
        )

    if is_admin:
        status = (
            '<div style="background-color: #fef3c7; padding: 15px;">'
            "<h3>System Status:</h3>"
            f"<p>Live location data {'included' if location else 'not available'}<br>"
            "All emergency contacts are being notified<br>"
            "Response coordination may be required</p></div>"
        )
    else:
        status = (
            '<div style="background-color: #dbeafe; padding: 15px;">'
            "<h3>What You Should Do:</h3><ol>"
            "<li><strong>Try to contact the person immediately</strong> by phone or text</li>"
            "<li><strong>If you cannot reach them</strong>, consider calling emergency services</li>"
            "<li><strong>Use the location information</strong> above to help responders</li>"
            "</ol></div>"
        )

    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        '<div style="background-color: #dc2626; color: white; padding: 20px; text-align: center;">'
        '<h1 style="margin: 0;">EMERGENCY ALERT</h1></div>'
        f'<div style="padding: 20px;"><h2 style="color: #dc2626;">URGENT: {greeting}</h2>'
        f"<p><strong>{intro}</strong></p>"
        f'<div style="background-color: #dc2626; color: white; padding: 15px;">'
        f"<h3>IMMEDIATE ACTION REQUIRED</h3><p>{call_to_action}</p></div>"
        f"{_location_section(location)}"
        f"<h3>Emergency Details</h3><table>{details}</table>"
        f"{factors}{status}"
        '<div style="border-top: 2px solid #dc2626; font-size: 12px; color: #666;">'
        "<p><strong>This is an automated emergency alert from SafeWatch.</strong></p>"
        f"<p>Alert generated: {datetime.now(timezone.utc).isoformat()}</p>"
        "</div></div></div>"
    )


def render_contact_added(recipient: Recipient, contact: EmergencyContact, location: Optional[LocationSample]) -> str:
    is_admin = recipient.type == RecipientType.ADMIN
    greeting = "SafeWatch Administrator" if is_admin else escape(recipient.name)
    if is_admin:
        message = "A new emergency contact has been added to the SafeWatch system."
    else:
        message = "A new emergency contact has been added to a SafeWatch user you support. Please stay alert."

    details = (
        f"<tr><td><strong>Name:</strong></td><td>{escape(contact.name)}</td></tr>"
        f"<tr><td><strong>Phone:</strong></td><td>{escape(contact.phone)}</td></tr>"
        f"<tr><td><strong>Email:</strong></td><td>{escape(contact.email)}</td></tr>"
        f"<tr><td><strong>Relationship:</strong></td><td>{escape(contact.relationship)}</td></tr>"
        f"<tr><td><strong>Added:</strong></td><td>{contact.created_at.strftime('%Y-%m-%d %H:%M:%S %Z')}</td></tr>"
    )
    if is_admin:
        details = (
            f"<tr><td><strong>User ID:</strong></td><td>{escape(contact.user_id)}</td></tr>"
            f"<tr><td><strong>Contact ID:</strong></td><td>{escape(contact.id)}</td></tr>"
            + details
        )

    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        '<div style="background-color: #dc2626; color: white; padding: 20px; text-align: center;">'
        '<h1 style="margin: 0;">EMERGENCY CONTACT ADDED</h1></div>'
        f'<div style="padding: 20px;"><h2>Hello {greeting},</h2>'
        f"<p><strong>{message}</strong></p>"
        f"<h3>New Contact</h3><table>{details}</table>"
        f"{_location_section(location)}"
        '<div style="border-top: 2px solid #dc2626; font-size: 12px; color: #666;">'
        "<p><strong>This is an automated notice from SafeWatch.</strong></p>"
        f"<p>Notice generated: {datetime.now(timezone.utc).isoformat()}</p>"
        "</div></div></div>"
    )
