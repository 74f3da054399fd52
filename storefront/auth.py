from fastapi import Header, HTTPException
from jose import JWTError, jwt

from storefront.config import get_settings


def verify_token(authorization: str = Header(None)):
    secret = get_settings().require("jwt_secret")
    try:
        scheme, token = (authorization or "").split()
        if scheme.lower() != "bearer":
            raise ValueError("Unsupported authorization scheme")
        return jwt.decode(token, secret, algorithms=["HS256"])
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
