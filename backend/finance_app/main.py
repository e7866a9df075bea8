"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the household finance tracker.
Controllers are intentionally thin: they accept requests, check the
bearer token, delegate to services and return JSON responses. Service
exceptions are translated to status codes by the handlers registered
below.

Endpoint groups (all under /api):
- auth: register, login, auth-provider webhook
- users: current profile, email subscriptions
- households: CRUD, active month, members, invitations
- definitions: accounts, household users, categories, types
- transactions: CRUD, bulk/CSV import, duplicates, analytics
- budgets: audit, per-user allowance, performance and alerts
- cron/email: weekly summary
"""

import hmac
import json
import logging
import time
import uuid
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from . import models, services
from .auth import get_current_user
from .config import settings
from .database import create_db_and_tables, engine, get_session
from .errors import ConflictError, ForbiddenError, ImportValidationError, NotFoundError
from .repositories import TransactionFilter
from .schemas import (
    AccountIn, AccountUpdateIn, BulkCategoriesIn, BulkTransactionsIn, BulkTypesIn, CategoryIn,
    CategoryUpdateIn, EmailSubscriptionIn, HouseholdIn, HouseholdUpdateIn, HouseholdUserIn,
    HouseholdUserUpdateIn, InvitationIn, LoginIn, RegisterIn, RoleUpdateIn, TokenOut, TransactionIn,
    TransactionUpdateIn, TypeIn, TypeUpdateIn, UserUpdateIn,
)
from .utils import webhook_signature
from .utils.error_logging import log_api_error
from .utils.rate_limit import InMemoryRateLimiter, RateLimitExceeded

app = FastAPI(title="Household Finance Tracker API")
logger = logging.getLogger("finance_app.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)
rate_limiter = InMemoryRateLimiter()

# Wide-open CORS keeps a locally served frontend working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/api"):
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
    return response


@app.exception_handler(ImportValidationError)
def import_validation_handler(request: Request, exc: ImportValidationError):
    return JSONResponse(status_code=400, content={'detail': str(exc), 'validation_errors': exc.errors})


@app.exception_handler(ValueError)
def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={'detail': str(exc)})


@app.exception_handler(NotFoundError)
def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={'detail': str(exc)})


@app.exception_handler(ForbiddenError)
def forbidden_handler(request: Request, exc: ForbiddenError):
    return JSONResponse(status_code=403, content={'detail': str(exc)})


@app.exception_handler(ConflictError)
def conflict_handler(request: Request, exc: ConflictError):
    return JSONResponse(status_code=409, content={'detail': str(exc), 'error_type': exc.error_type})


@app.exception_handler(IntegrityError)
def integrity_error_handler(request: Request, exc: IntegrityError):
    log_api_error(request, exc, operation='database write')
    if request.method == 'DELETE':
        detail, error_type = 'Record is still referenced by other data', 'FOREIGN_KEY_CONSTRAINT'
    else:
        detail, error_type = 'A record with this name already exists', 'DUPLICATE_NAME'
    return JSONResponse(status_code=409, content={'detail': detail, 'error_type': error_type})


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning("rate limited scope=%s client=%s path=%s", exc.scope, _client(request), request.url.path)
    return JSONResponse(status_code=429, content={'detail': str(exc)}, headers=exc.result.headers())


def _client(request: Request) -> str:
    return request.client.host if request.client else 'unknown'


def auth_rate_limit(request: Request) -> None:
    rate_limiter.check('auth', _client(request), settings.AUTH_RATE_LIMIT_PER_MIN, settings.RATE_LIMIT_WINDOW_SECONDS)


def import_rate_limit(request: Request) -> None:
    rate_limiter.check('import', _client(request), settings.API_RATE_LIMIT_PER_MIN, settings.RATE_LIMIT_WINDOW_SECONDS)


# ---- auth & users ---------------------------------------------------------

@app.post('/api/auth/register', status_code=201, dependencies=[Depends(auth_rate_limit)])
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new user and return the profile with an access token."""
    auth = services.AuthService(db)
    user = auth.register(payload.email, payload.password, payload.first_name, payload.last_name)
    return {**services.user_out(user), 'access_token': auth.issue_token(user)}


@app.post('/api/auth/login', response_model=TokenOut, dependencies=[Depends(auth_rate_limit)])
def login(payload: LoginIn, db: Session = Depends(get_session)):
    """Authenticate a user and return a short-lived JWT token.

    The returned token contains `user_id` and `email` and is signed
    using the configured JWT secret.
    """
    token = services.AuthService(db).authenticate(payload.email, payload.password)
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    return {'access_token': token}


async def raw_body(request: Request) -> bytes:
    return await request.body()


@app.post('/api/webhooks/auth')
def auth_webhook(request: Request, body: bytes = Depends(raw_body), db: Session = Depends(get_session)):
    """Sync users from the auth provider (signed `user.*` events)."""
    webhook_signature.verify(settings.WEBHOOK_SECRET, request.headers, body)
    try:
        event = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail='invalid JSON payload')
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail='invalid event payload')
    return services.WebhookService(db).handle(event)


@app.get('/api/users/current')
def current_user(user: models.User = Depends(get_current_user)):
    return services.user_out(user)


@app.put('/api/users/current')
def update_current_user(payload: UserUpdateIn, db: Session = Depends(get_session),
                        user: models.User = Depends(get_current_user)):
    user = services.UserService(db).update_profile(user, payload.first_name, payload.last_name)
    return services.user_out(user)


@app.get('/api/users/email-subscriptions')
def email_subscriptions(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return {'subscriptions': services.UserService(db).email_subscriptions(user)}


@app.put('/api/users/email-subscriptions')
def update_email_subscription(payload: EmailSubscriptionIn, db: Session = Depends(get_session),
                              user: models.User = Depends(get_current_user)):
    return services.UserService(db).set_subscription(user, payload.household_id, payload.weekly_summary)


# ---- households, members, invitations --------------------------------------

@app.get('/api/households')
def list_households(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.HouseholdService(db).list_for_user(user)


@app.post('/api/households', status_code=201)
def create_household(payload: HouseholdIn, db: Session = Depends(get_session),
                     user: models.User = Depends(get_current_user)):
    """Create a household; the caller becomes its OWNER."""
    return services.HouseholdService(db).create(user, payload.name, payload.annual_budget, payload.seed_defaults)


@app.get('/api/households/{household_id}')
def get_household(household_id: int, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user)):
    return services.HouseholdService(db).get(household_id, user)


@app.put('/api/households/{household_id}')
def update_household(household_id: int, payload: HouseholdUpdateIn, db: Session = Depends(get_session),
                     user: models.User = Depends(get_current_user)):
    return services.HouseholdService(db).update(household_id, user, payload.model_dump(exclude_unset=True))


@app.delete('/api/households/{household_id}')
def delete_household(household_id: int, db: Session = Depends(get_session),
                     user: models.User = Depends(get_current_user)):
    services.HouseholdService(db).delete(household_id, user)
    return {'status': 'ok'}


@app.get('/api/households/{household_id}/active-month')
def active_month(household_id: int, db: Session = Depends(get_session),
                 user: models.User = Depends(get_current_user)):
    """Most recent month with enough data to be worth showing on the dashboard."""
    return services.HouseholdService(db).active_month(household_id, user)


@app.get('/api/households/{household_id}/members')
def list_members(household_id: int, db: Session = Depends(get_session),
                 user: models.User = Depends(get_current_user)):
    return services.MembershipService(db).list(household_id, user)


@app.patch('/api/households/{household_id}/members/{member_user_id}')
def update_member_role(household_id: int, member_user_id: int, payload: RoleUpdateIn,
                       db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.MembershipService(db).update_role(household_id, member_user_id, payload.role, user)


@app.delete('/api/households/{household_id}/members/{member_user_id}')
def remove_member(household_id: int, member_user_id: int, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user)):
    """Remove a member (owners) or leave the household (any member, self)."""
    services.MembershipService(db).remove(household_id, member_user_id, user)
    return {'status': 'ok'}


@app.get('/api/households/{household_id}/invitations')
def list_invitations(household_id: int, db: Session = Depends(get_session),
                     user: models.User = Depends(get_current_user)):
    return services.InvitationService(db).list(household_id, user)


@app.post('/api/households/{household_id}/invitations', status_code=201)
def create_invitation(household_id: int, payload: InvitationIn, db: Session = Depends(get_session),
                      user: models.User = Depends(get_current_user)):
    """Create an invitation link; with `invitee_email` the link is also emailed."""
    return services.InvitationService(db).create(
        household_id, user, payload.role, payload.expires_in_days, payload.invitee_email,
    )


@app.get('/api/invitations/by-token/{token}')
def get_invitation(token: str, db: Session = Depends(get_session)):
    """Public invitation preview shown before the invitee signs in."""
    return services.InvitationService(db).get_by_token(token)


@app.post('/api/invitations/by-token/{token}/accept')
def accept_invitation(token: str, db: Session = Depends(get_session),
                      user: models.User = Depends(get_current_user)):
    return services.InvitationService(db).accept(token, user)


@app.post('/api/invitations/by-token/{token}/decline')
def decline_invitation(token: str, db: Session = Depends(get_session),
                       user: models.User = Depends(get_current_user)):
    return services.InvitationService(db).decline(token, user)


@app.delete('/api/invitations/by-id/{invitation_id}')
def delete_invitation(invitation_id: int, db: Session = Depends(get_session),
                      user: models.User = Depends(get_current_user)):
    services.InvitationService(db).delete(invitation_id, user)
    return {'status': 'ok'}


# ---- household definitions -------------------------------------------------

@app.get('/api/accounts')
def list_accounts(household_id: int, db: Session = Depends(get_session),
                  user: models.User = Depends(get_current_user)):
    return services.AccountService(db).list(household_id, user)


@app.post('/api/accounts', status_code=201)
def create_account(payload: AccountIn, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    return services.AccountService(db).create(payload.household_id, user, payload.model_dump())


@app.put('/api/accounts/{item_id}')
def update_account(item_id: int, payload: AccountUpdateIn, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    return services.AccountService(db).update(item_id, user, payload.model_dump(exclude_unset=True))


@app.delete('/api/accounts/{item_id}')
def delete_account(item_id: int, db: Session = Depends(get_session),
                   user: models.User = Depends(get_current_user)):
    services.AccountService(db).delete(item_id, user)
    return {'status': 'ok'}


@app.get('/api/household-users')
def list_household_users(household_id: int, db: Session = Depends(get_session),
                         user: models.User = Depends(get_current_user)):
    return services.HouseholdUserService(db).list(household_id, user)


@app.post('/api/household-users', status_code=201)
def create_household_user(payload: HouseholdUserIn, db: Session = Depends(get_session),
                          user: models.User = Depends(get_current_user)):
    return services.HouseholdUserService(db).create(payload.household_id, user, payload.model_dump())


@app.put('/api/household-users/{item_id}')
def update_household_user(item_id: int, payload: HouseholdUserUpdateIn, db: Session = Depends(get_session),
                          user: models.User = Depends(get_current_user)):
    return services.HouseholdUserService(db).update(item_id, user, payload.model_dump(exclude_unset=True))


@app.delete('/api/household-users/{item_id}')
def delete_household_user(item_id: int, db: Session = Depends(get_session),
                          user: models.User = Depends(get_current_user)):
    services.HouseholdUserService(db).delete(item_id, user)
    return {'status': 'ok'}


@app.get('/api/categories')
def list_categories(household_id: int, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    return services.CategoryService(db).list(household_id, user)


@app.post('/api/categories/bulk', status_code=201)
def bulk_create_categories(payload: BulkCategoriesIn, db: Session = Depends(get_session),
                           user: models.User = Depends(get_current_user)):
    """Create several categories; names that already exist are skipped."""
    items = [c.model_dump() for c in payload.categories]
    return services.CategoryService(db).bulk_create(payload.household_id, user, items)


@app.post('/api/categories', status_code=201)
def create_category(payload: CategoryIn, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    return services.CategoryService(db).create(payload.household_id, user, payload.model_dump())


@app.put('/api/categories/{item_id}')
def update_category(item_id: int, payload: CategoryUpdateIn, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    return services.CategoryService(db).update(item_id, user, payload.model_dump(exclude_unset=True))


@app.delete('/api/categories/{item_id}')
def delete_category(item_id: int, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    services.CategoryService(db).delete(item_id, user)
    return {'status': 'ok'}


@app.get('/api/types')
def list_types(household_id: int, db: Session = Depends(get_session),
               user: models.User = Depends(get_current_user)):
    return services.TypeService(db).list(household_id, user)


@app.post('/api/types/bulk', status_code=201)
def bulk_create_types(payload: BulkTypesIn, db: Session = Depends(get_session),
                      user: models.User = Depends(get_current_user)):
    items = [t.model_dump() for t in payload.types]
    return services.TypeService(db).bulk_create(payload.household_id, user, items)


@app.post('/api/types', status_code=201)
def create_type(payload: TypeIn, db: Session = Depends(get_session),
                user: models.User = Depends(get_current_user)):
    return services.TypeService(db).create(payload.household_id, user, payload.model_dump())


@app.put('/api/types/{item_id}')
def update_type(item_id: int, payload: TypeUpdateIn, db: Session = Depends(get_session),
                user: models.User = Depends(get_current_user)):
    return services.TypeService(db).update(item_id, user, payload.model_dump(exclude_unset=True))


@app.delete('/api/types/{item_id}')
def delete_type(item_id: int, db: Session = Depends(get_session),
                user: models.User = Depends(get_current_user)):
    services.TypeService(db).delete(item_id, user)
    return {'status': 'ok'}


# ---- transactions ------------------------------------------------------------
# fixed paths are registered before `/api/transactions/{txn_id}`

@app.get('/api/transactions')
def list_transactions(
    household_id: int,
    page: int = 1,
    limit: int = 10,
    account_id: Optional[int] = None,
    household_user_id: Optional[int] = None,
    category_id: Optional[int] = None,
    type_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Paginated transactions, newest first, with optional filters."""
    flt = TransactionFilter(
        household_id=household_id, start_date=start_date, end_date=end_date, account_id=account_id,
        household_user_id=household_user_id, category_id=category_id, type_id=type_id, search=search,
    )
    return services.TransactionService(db).list(user, flt, page=page, limit=limit)


@app.post('/api/transactions', status_code=201)
def create_transaction(payload: TransactionIn, db: Session = Depends(get_session),
                       user: models.User = Depends(get_current_user)):
    return services.TransactionService(db).create(user, payload.model_dump())


@app.post('/api/transactions/bulk', status_code=201, dependencies=[Depends(import_rate_limit)])
def bulk_import_transactions(payload: BulkTransactionsIn, db: Session = Depends(get_session),
                             user: models.User = Depends(get_current_user)):
    """Import name-referenced rows; nothing is saved when any row is invalid."""
    return services.ImportService(db).import_rows(payload.household_id, user, payload.transactions)


@app.post('/api/transactions/upload', status_code=201, dependencies=[Depends(import_rate_limit)])
def upload_transactions(household_id: int = Form(...), file: UploadFile = File(...),
                        db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Import a CSV file (columns: account, user, transaction date, post date,
    description, category, type, amount, memo)."""
    if not file.filename:
        raise HTTPException(status_code=400, detail='no file')
    if not file.filename.lower().endswith('.csv'):
        raise HTTPException(status_code=400, detail='only .csv files are supported')
    content = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail='file too large')
    return services.ImportService(db).import_csv(household_id, user, content)


@app.get('/api/transactions/duplicates')
def find_duplicates(household_id: int, start_date: Optional[date] = None, end_date: Optional[date] = None,
                    time_window: int = 5, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    """Likely duplicate pairs scored by amount, date proximity and description similarity."""
    return services.TransactionService(db).duplicates(household_id, user, start_date, end_date, time_window)


@app.get('/api/transactions/analytics')
def transaction_analytics(household_id: int, group_by: str = 'category', start_date: Optional[date] = None,
                          end_date: Optional[date] = None, type_id: Optional[int] = None,
                          is_outflow: Optional[bool] = None, db: Session = Depends(get_session),
                          user: models.User = Depends(get_current_user)):
    flt = TransactionFilter(household_id=household_id, start_date=start_date, end_date=end_date,
                            type_id=type_id, is_outflow=is_outflow)
    return services.AnalyticsService(db).breakdown(user, flt, group_by=group_by)


@app.get('/api/transactions/sankey')
def money_flow(household_id: int, start_date: Optional[date] = None, end_date: Optional[date] = None,
               db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    flt = TransactionFilter(household_id=household_id, start_date=start_date, end_date=end_date)
    return services.AnalyticsService(db).money_flow(user, flt)


@app.get('/api/transactions/monthly-totals')
def monthly_totals(household_id: int, start_date: Optional[date] = None, end_date: Optional[date] = None,
                   db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    flt = TransactionFilter(household_id=household_id, start_date=start_date, end_date=end_date)
    return services.AnalyticsService(db).monthly_totals(user, flt)


@app.get('/api/transactions/date-ranges')
def date_ranges(household_id: int, db: Session = Depends(get_session),
                user: models.User = Depends(get_current_user)):
    return services.TransactionService(db).date_ranges(household_id, user)


@app.get('/api/transactions/{txn_id}')
def get_transaction(txn_id: int, db: Session = Depends(get_session),
                    user: models.User = Depends(get_current_user)):
    return services.TransactionService(db).get(txn_id, user)


@app.put('/api/transactions/{txn_id}')
def update_transaction(txn_id: int, payload: TransactionUpdateIn, db: Session = Depends(get_session),
                       user: models.User = Depends(get_current_user)):
    return services.TransactionService(db).update(txn_id, user, payload.model_dump(exclude_unset=True))


@app.delete('/api/transactions/{txn_id}')
def delete_transaction(txn_id: int, db: Session = Depends(get_session),
                       user: models.User = Depends(get_current_user)):
    services.TransactionService(db).delete(txn_id, user)
    return {'status': 'ok'}


# ---- budgets -----------------------------------------------------------------

@app.get('/api/budgets/audit')
def budget_audit(household_id: int, time_period_type: str = 'month', start_date: Optional[date] = None,
                 end_date: Optional[date] = None, category_id: Optional[int] = None,
                 db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Category budgets versus actual spending, overspent categories first."""
    return services.BudgetService(db).audit(household_id, user, time_period_type, start_date, end_date, category_id)


@app.get('/api/budgets/user-budget')
def user_budget(household_id: int, household_user_id: int, time_period_type: str = 'month',
                start_date: Optional[date] = None, end_date: Optional[date] = None, include_inflow: bool = False,
                db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.BudgetService(db).user_budget(
        household_id, user, household_user_id, time_period_type, start_date, end_date, include_inflow,
    )


@app.get('/api/budgets/performance')
def budget_performance(household_id: int, time_period_type: str = 'month', start_date: Optional[date] = None,
                       end_date: Optional[date] = None, db: Session = Depends(get_session),
                       user: models.User = Depends(get_current_user)):
    return services.BudgetService(db).performance(household_id, user, time_period_type, start_date, end_date)


# ---- weekly summary ------------------------------------------------------------

@app.api_route('/api/cron/weekly-summary', methods=['GET', 'POST'])
def weekly_summary_cron(request: Request, db: Session = Depends(get_session)):
    """Scheduler entry point; requires `Authorization: Bearer <CRON_SECRET>`."""
    expected = f"Bearer {settings.CRON_SECRET}"
    supplied = request.headers.get('Authorization', '')
    if not settings.CRON_SECRET or not hmac.compare_digest(supplied.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail='unauthorized')
    return services.SummaryService(db).run_weekly()


@app.post('/api/email/weekly-summary-test')
def weekly_summary_test(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Send the weekly summary for the caller's subscribed households to the caller."""
    return services.SummaryService(db).send_for_user(user, include_summaries=True)


# ---- misc ----------------------------------------------------------------------

@app.get("/", response_class=HTMLResponse)
def home():
    """Minimal homepage for quick manual testing."""
    return """
    <!DOCTYPE html>
    <html>
    <head>
      <meta charset="UTF-8" />
      <title>Finance Tracker API</title>
      <style>
        body { font-family: Arial, sans-serif; margin: 32px; }
        a { color: #2563eb; }
        .card { max-width: 640px; padding: 16px; border: 1px solid #ddd; border-radius: 8px; }
      </style>
    </head>
    <body>
      <div class="card">
        <h1>Household Finance Tracker API</h1>
        <p>Quick links for local testing:</p>
        <ul>
          <li><a href="/docs">Swagger UI</a></li>
          <li><a href="/api/health">Health check</a></li>
        </ul>
        <p>Use <code>/api/auth/register</code> + <code>/api/auth/login</code> to get a token, then create a
        household with <code>/api/households</code>.</p>
      </div>
    </body>
    </html>
    """


@app.get("/api/health")
def health():
    """Health check for uptime monitoring, including a database round trip."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("health check: database unavailable")
        return JSONResponse(status_code=503, content={"status": "error", "database": "error"})
    return {"status": "ok", "database": "ok"}
