"""
Error taxonomy for the storefront core.

Service functions raise these; main.py turns them into JSON responses of the
form {"detail": message} with the class status code.
"""


class AppError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


# 400 - missing or malformed input

class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class MissingFieldError(ValidationError):
    default_message = "Required fields are missing"


class EmptyCartError(ValidationError):
    default_message = "Cart is empty"


class InvalidIdError(ValidationError):
    default_message = "Invalid id format"


class InvalidQuantityError(ValidationError):
    default_message = "Quantity must be at least 1"


class InvalidCredentialsError(ValidationError):
    default_message = "Invalid email or password"


class InvalidTokenError(ValidationError):
    default_message = "Invalid or expired token"


# 404

class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ProductNotFoundError(NotFoundError):
    default_message = "Product not found"


class CategoryNotFoundError(NotFoundError):
    default_message = "Category not found"


class CouponNotFoundError(NotFoundError):
    default_message = "Invalid or expired coupon code"


class OrderNotFoundError(NotFoundError):
    default_message = "Order not found"


class ReviewNotFoundError(NotFoundError):
    default_message = "Review not found"


class AddressNotFoundError(NotFoundError):
    default_message = "Address not found"


class UserNotFoundError(NotFoundError):
    default_message = "User not found"


class CartNotFoundError(NotFoundError):
    default_message = "Cart not found"


class CartItemNotFoundError(NotFoundError):
    default_message = "Product not found in cart"


# 400 - duplicate unique keys

class ConflictError(AppError):
    status_code = 400
    default_message = "Resource already exists"


class DuplicateSlugError(ConflictError):
    default_message = "Slug already in use"


class DuplicateCouponError(ConflictError):
    default_message = "Coupon code already exists"


class DuplicateEmailError(ConflictError):
    default_message = "An account already exists with this email"


# 400 - business rules

class BusinessRuleError(AppError):
    status_code = 400
    default_message = "Operation not allowed"


class CouponNotYetActiveError(BusinessRuleError):
    default_message = "This coupon is not active yet"


class CouponExpiredError(BusinessRuleError):
    default_message = "This coupon has expired"


class MinimumAmountNotMetError(BusinessRuleError):
    def __init__(self, minimum):
        self.minimum = minimum
        amount = f"{minimum:.2f}".rstrip("0").rstrip(".")
        super().__init__(f"Minimum amount for this coupon: {amount} DT")


class InvalidRatingError(BusinessRuleError):
    default_message = "Rating must be between 1 and 5"


class InvalidStatusTransitionError(BusinessRuleError):
    default_message = "Invalid status transition"


# 403

class StateError(AppError):
    status_code = 403
    default_message = "Operation not allowed in the current state"


class AccountNotVerifiedError(StateError):
    default_message = "Account not verified. Please verify your email before logging in."
