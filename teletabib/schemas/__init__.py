from teletabib.schemas.auth import (
    AuthResponse,
    DoctorSignUpRequest,
    ResendOtpRequest,
    SignInRequest,
    SignUpRequest,
    UserResponse,
    VerifyOtpRequest,
)
