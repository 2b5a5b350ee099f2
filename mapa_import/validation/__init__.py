from .cnj import check_digits, format_cnj, is_valid, only_digits

__all__ = ["check_digits", "format_cnj", "is_valid", "only_digits"]
