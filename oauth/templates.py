"""HTML templates for the authorization flow.

Pages are plain str.format() templates; every value is HTML-escaped by
the render_* helpers before substitution.

Rezoomex colors:
- Background: #F4F7FA
- Primary: #007CBA
- Primary hover: #005A87
- Text: #1F2933
- Secondary text: #616E7C
"""

from html import escape

_STYLE = """
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Arial, sans-serif;
               background: #F4F7FA;
               min-height: 100vh; display: flex; align-items: center; justify-content: center; margin: 0; }}
        .container {{ background: white; padding: 40px; border-radius: 12px; box-shadow: 0 4px 20px rgba(0,0,0,0.08);
                     width: 100%; max-width: 420px; border: 1px solid #E4E7EB; }}
        h1 {{ margin: 0 0 8px; color: #1F2933; font-size: 24px; font-weight: 600; }}
        p {{ color: #616E7C; margin: 0 0 20px; }}
        .form-group {{ margin-bottom: 18px; }}
        label {{ display: block; margin-bottom: 6px; color: #1F2933; font-weight: 500; font-size: 14px; }}
        input[type="email"], input[type="password"] {{
            width: 100%; padding: 10px 12px; border: 1px solid #CBD2D9; border-radius: 6px;
            font-size: 15px; box-sizing: border-box; }}
        input:focus {{ outline: none; border-color: #007CBA; }}
        button {{ width: 100%; padding: 12px; background: #007CBA; color: white; border: none;
                 border-radius: 6px; font-size: 15px; font-weight: 600; cursor: pointer; }}
        button:hover {{ background: #005A87; }}
        .error {{ background: #FFEBEE; color: #B71C1C; padding: 12px; border-radius: 6px; margin-bottom: 18px; }}
        .code {{ font-family: monospace; background: #F4F7FA; padding: 10px; border-radius: 6px;
                word-break: break-all; margin-bottom: 18px; }}
        small {{ color: #9AA5B1; }}
    </style>
"""

LOGIN_PAGE = """
<!DOCTYPE html>
<html>
<head>
    <title>Rezoomex Authentication</title>
""" + _STYLE + """
</head>
<body>
    <div class="container">
        <h1>Rezoomex MCP Authentication</h1>
        {error}
        <p>Please enter your Rezoomex credentials:</p>
        <form method="POST" action="/authenticate">
            <input type="hidden" name="state" value="{state}">
            <input type="hidden" name="redirect_uri" value="{redirect_uri}">
            <div class="form-group">
                <label for="email">Email</label>
                <input type="email" id="email" name="email" required placeholder="you@company.com">
            </div>
            <div class="form-group">
                <label for="password">Password</label>
                <input type="password" id="password" name="password" required>
            </div>
            <button type="submit">Sign In</button>
        </form>
        <p><small>Authenticating with: {upstream}</small></p>
    </div>
</body>
</html>
"""

SUCCESS_PAGE = """
<!DOCTYPE html>
<html>
<head>
    <title>Authentication Successful</title>
""" + _STYLE + """
</head>
<body>
    <div class="container">
        <h1>Authentication Successful!</h1>
        <p>You have successfully authenticated with Rezoomex.</p>
        <p>Authorization code:</p>
        <div class="code"><code>{code}</code></div>
        <p>You can now close this window and return to your IDE.</p>
    </div>
</body>
</html>
"""

COMPLETION_PAGE = """
<!DOCTYPE html>
<html>
<head>
    <title>Authentication Complete</title>
""" + _STYLE + """
</head>
<body>
    <div class="container">
        <h1>Authentication Complete!</h1>
        <p>You can close this window and return to your IDE.</p>
    </div>
</body>
</html>
"""

ERROR_PAGE = """
<!DOCTYPE html>
<html>
<head>
    <title>Authentication Error</title>
""" + _STYLE + """
</head>
<body>
    <div class="container">
        <h1>Authentication Error</h1>
        <div class="error">{message}</div>
        <p>Please restart the sign-in from your IDE.</p>
    </div>
</body>
</html>
"""


def render_login(state: str, redirect_uri: str, upstream: str, error: str = None) -> str:
    error_html = ""
    if error:
        error_html = f'<div class="error">Authentication failed: {escape(error)}</div>'
    return LOGIN_PAGE.format(
        state=escape(state or ""),
        redirect_uri=escape(redirect_uri or ""),
        upstream=escape(upstream),
        error=error_html,
    )


def render_success(code: str) -> str:
    return SUCCESS_PAGE.format(code=escape(code))


def render_completion() -> str:
    return COMPLETION_PAGE.format()


def render_error(message: str) -> str:
    return ERROR_PAGE.format(message=escape(message))
