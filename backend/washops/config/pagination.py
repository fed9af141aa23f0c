from washops.errors import ValidationError

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def parse_pagination(args):
    """(limit, offset) from request args, clamped to [1, MAX_LIMIT] and >= 0."""
    try:
        limit = int(args.get('limit', DEFAULT_LIMIT))
        offset = int(args.get('offset', 0))
    except (TypeError, ValueError):
        raise ValidationError('limit/offset must be int')
    return max(1, min(limit, MAX_LIMIT)), max(0, offset)
