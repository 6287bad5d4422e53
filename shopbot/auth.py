from fastapi import Header, HTTPException, Request
from jose import JWTError, jwt


def verify_operator_token(request: Request, authorization: str = Header(None)) -> dict:
    """Check the operator's bearer JWT (HS256, JWT_SECRET) and return its claims."""
    secret = request.app.state.services.settings.jwt_secret
    try:
        scheme, token = (authorization or "").split()
        if scheme.lower() != "bearer" or not secret:
            raise ValueError("bad scheme")
        return jwt.decode(token, secret, algorithms=["HS256"])
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
