from fastapi import APIRouter, Depends, status

from app.dependencies import get_account_service
from app.schemas import ErrorResponse, LoginRequest, RegisterRequest, UserResponse
from app.services.accounts import AccountService

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user",
    responses={
        400: {"model": ErrorResponse, "description": "Missing username, email or password"},
        409: {"model": ErrorResponse, "description": "Username or email already exists"},
    },
)
async def register(body: RegisterRequest, accounts: AccountService = Depends(get_account_service)):
    user = await accounts.register(body.username, body.email, body.password)
    return user


@router.post(
    "/login",
    response_model=UserResponse,
    summary="Check credentials",
    responses={401: {"model": ErrorResponse, "description": "Invalid credentials"}},
)
async def login(body: LoginRequest, accounts: AccountService = Depends(get_account_service)):
    # no session is created; callers pass the returned id with each upload
    user = await accounts.login(body.username, body.password)
    return user
