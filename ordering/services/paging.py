from ordering.domain.errors import ValidationError


MAX_PAGE_SIZE = 100


def check_page(limit: int, offset: int) -> None:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise ValidationError("offset must not be negative")
