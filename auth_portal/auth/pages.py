"""
HTML pages served by the authentication routes.
"""

from html import escape
from typing import Any, Dict, Optional

from fastapi.responses import HTMLResponse

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
    <style>
        * {{ margin: 0; padding: 0; box-sizing: border-box; }}
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif;
            background: #f5f5f5;
            min-height: 100vh;
            display: flex;
            align-items: center;
            justify-content: center;
            padding: 20px;
        }}
        .container {{
            background: white;
            border-radius: 12px;
            padding: 40px;
            max-width: 560px;
            width: 100%;
            box-shadow: 0 10px 40px rgba(0,0,0,0.1);
            text-align: center;
        }}
        h1 {{ color: #1f2937; font-size: 26px; margin-bottom: 16px; }}
        p {{ color: #6b7280; font-size: 16px; line-height: 1.6; margin-bottom: 24px; }}
        img.avatar {{ width: 96px; height: 96px; border-radius: 50%; margin-bottom: 16px; }}
        table {{ width: 100%; text-align: left; border-collapse: collapse; margin-bottom: 24px; }}
        td {{ padding: 6px 8px; border-bottom: 1px solid #e5e7eb; font-size: 14px; word-break: break-all; }}
        td.claim {{ color: #6b7280; width: 35%; }}
        .button {{
            display: inline-block;
            background: #635dff;
            color: white;
            padding: 12px 28px;
            border-radius: 8px;
            text-decoration: none;
            font-weight: 600;
        }}
    </style>
</head>
<body>
    <div class="container">
{body}
    </div>
</body>
</html>"""


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        content=_PAGE_TEMPLATE.format(title=escape(title), body=body),
        status_code=status_code,
    )


def render_home_page() -> HTMLResponse:
    """Anonymous landing page."""
    body = """        <h1>Welcome</h1>
        <p>Sign in with your identity provider to see your profile.</p>
        <a class="button" href="/login">SignIn</a>"""
    return _page("Home", body)


def render_user_page(profile: Optional[Dict[str, Any]]) -> HTMLResponse:
    """Profile page listing the claims of the signed-in user."""
    profile = profile or {}
    name = profile.get("name") or profile.get("nickname") or profile.get("email") or "User"

    avatar = ""
    picture = profile.get("picture")
    if isinstance(picture, str) and picture.startswith("https://"):
        avatar = f'        <img class="avatar" src="{escape(picture, quote=True)}" alt="avatar">\n'

    rows = "\n".join(
        f'            <tr><td class="claim">{escape(str(claim))}</td><td>{escape(str(value))}</td></tr>'
        for claim, value in sorted(profile.items())
    )

    body = (
        f"{avatar}"
        f"        <h1>Welcome {escape(str(name))}</h1>\n"
        f"        <table>\n{rows}\n        </table>\n"
        f'        <a class="button" href="/logout">Logout</a>'
    )
    return _page("User", body)
