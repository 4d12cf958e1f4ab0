from pydantic import BaseModel, EmailStr, Field, field_validator

from .users import PASSWORD_MIN_LENGTH, UserOut


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.lower()


class RegisterRequest(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN_LENGTH)
    department: str = Field(min_length=2, max_length=50)


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    user: UserOut
    token: str
    refresh_token: str
    token_type: str = "bearer"
