"""
日期区间工具
所有住宿区间均为半开区间 [check_in, check_out)
"""
from datetime import date, timedelta
from typing import List, Tuple


def overlaps(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """两个半开区间是否有交集；前一段的离店日等于后一段的入住日不算冲突"""
    return a_start < b_end and b_start < a_end


def nights_in_range(check_in: date, check_out: date) -> List[date]:
    """区间内被占用的每一个夜晚（不含离店日）"""
    nights = []
    current = check_in
    while current < check_out:
        nights.append(current)
        current += timedelta(days=1)
    return nights


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    """返回 [当月1日, 下月1日)，month 从 1 开始"""
    if not 1 <= month <= 12:
        raise ValueError(f"month must be 1-12, got {month}")
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, end


def financial_year_for(day: date) -> str:
    """财年从4月开始，如 2024-05-10 -> '2024-2025'，2025-02-01 -> '2024-2025'"""
    if day.month >= 4:
        return f"{day.year}-{day.year + 1}"
    return f"{day.year - 1}-{day.year}"
