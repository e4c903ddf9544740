# app/services/utils.py


def format_inr(amount) -> str:
    """
    Format a whole-rupee amount with Indian digit grouping, e.g. 12,50,000.
    """
    value = int(amount)
    sign = "-" if value < 0 else ""
    digits = str(abs(value))
    if len(digits) <= 3:
        return f"{sign}₹{digits}"
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return f"{sign}₹{','.join(groups)},{tail}"


def format_tenure(months: int) -> str:
    if months >= 12 and months % 12 == 0:
        years = months // 12
        return f"{years} year{'s' if years > 1 else ''}"
    return f"{months} months"
