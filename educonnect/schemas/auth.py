from pydantic import BaseModel, Field, field_validator


class LoginForm(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: str) -> str:
        return v.strip().lower()


class ChangePasswordForm(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8, max_length=128)
