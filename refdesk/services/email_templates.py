"""
E-mail bodies: the plain broadcast message and the per-match sheet.
"""

from dataclasses import dataclass
from html import escape

from refdesk.models.league import Match


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


def broadcast_email(subject: str | None, message: str) -> RenderedEmail:
    html_body = escape(message).replace("\n", "<br>")
    return RenderedEmail(
        subject=subject or "Message",
        html=f"<p>{html_body}</p>",
        text=message,
    )


def _official_line(assignment) -> str:
    official = assignment.official
    name = official.full_name if official is not None else "Non désigné"
    return f"{assignment.role} : {name}"


def match_sheet_email(match: Match, is_update: bool) -> RenderedEmail:
    """Designation sheet sent to every official assigned to ``match``."""
    teams = f"{match.home_team.name} contre {match.away_team.name}"
    prefix = "Mise à jour : " if is_update else ""
    subject = f"{prefix}Désignation - {match.home_team.name} vs {match.away_team.name}"

    date = match.match_date.strftime("%d/%m/%Y") if match.match_date else "Non définie"
    time = match.match_time or "Non défini"
    stadium = match.stadium.name if match.stadium else "Lieu non défini"
    if match.stadium is not None and match.stadium.location is not None:
        stadium = f"{stadium}, {match.stadium.location.name}"

    crew = [_official_line(a) for a in match.assignments]

    text_lines = []
    if is_update:
        text_lines += ["Cette désignation a été modifiée.", ""]
    text_lines += [
        "Bonjour,",
        "",
        "Vous êtes désigné(e) pour la rencontre suivante :",
        teams,
        f"Date : {date}",
        f"Heure : {time}",
        f"Lieu : {stadium}",
        "",
        "Équipe arbitrale :",
        *[f"- {line}" for line in crew],
        "",
        "Vos ordres de mission sont joints à ce message.",
    ]

    crew_html = "".join(f"<li>{escape(line)}</li>" for line in crew)
    update_html = "<p><strong>Cette désignation a été modifiée.</strong></p>" if is_update else ""
    html = (
        "<!DOCTYPE html><html lang=\"fr\"><head><meta charset=\"UTF-8\">"
        f"<title>{escape(subject)}</title></head><body>"
        f"{update_html}"
        "<p>Bonjour,</p>"
        "<p>Vous êtes désigné(e) pour la rencontre suivante :</p>"
        f"<h2>{escape(teams)}</h2>"
        "<ul>"
        f"<li>Date : {escape(date)}</li>"
        f"<li>Heure : {escape(time)}</li>"
        f"<li>Lieu : {escape(stadium)}</li>"
        "</ul>"
        f"<h3>Équipe arbitrale</h3><ul>{crew_html}</ul>"
        "<p>Vos ordres de mission sont joints à ce message.</p>"
        "</body></html>"
    )
    return RenderedEmail(subject=subject, html=html, text="\n".join(text_lines))
