import math


def paginate(query, page: int, limit: int) -> tuple[list, dict]:
    """Apply offset pagination to a query and describe the page"""
    page = max(1, page)
    limit = max(1, min(limit, 100))
    total = query.count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, {
        "total": total,
        "pages": math.ceil(total / limit),
        "page": page,
        "limit": limit,
    }
