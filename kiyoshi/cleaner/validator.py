"""
SQL 安全校验 - 证明一条清理语句不会删除保留期内的数据。

校验规则（全部满足才放行）：
1. 能被 MySQL 方言解析，且只包含一条语句
2. 必须是带 WHERE 条件的 DELETE
3. WHERE 条件中能找到 DATE_SUB(..., INTERVAL n UNIT) 调用，
   搜索只会穿过 AND、<、<= 以及 IN (子查询)（包括子查询 FROM 中的派生表）
4. INTERVAL 必须是不带引号的非负整数，单位为 DAY / MONTH(按 30 天) / YEAR(按 365 天)，
   换算后的天数 >= retention_days

这是一个保守的静态检查，不是语义证明：只要在可达的表达式中找到任意一个合格的
DATE_SUB 就会放行，即使它所在的分支与真正被删除的行在逻辑上无关。
这一已知缺口是刻意保留的行为，收紧前需要单独的设计决定。

SQL 解析依赖 sqlglot。sqlglot 会把 DATE_SUB(x, INTERVAL 30 DAY) 规范化为
DateSub(this=x, expression=30, unit=DAY)，也会把 INTERVAL 的数值统一成字符串字面量，
解析树里已经分不清 INTERVAL 30 DAY 和 INTERVAL '30' DAY。因此数值是否带引号
在词法层面检查：DATE_SUB 调用内紧跟 INTERVAL 的必须是数字 token。
"""

import re

import sqlglot
from loguru import logger
from sqlglot import exp
from sqlglot.errors import SqlglotError
from sqlglot.tokens import Token, TokenType

from kiyoshi.config.schema import SafeModeConfig
from kiyoshi.errors import QueryValidationError

BOUND_FUNCTION = "DATE_SUB"

# 时间单位 → 折合天数
UNIT_DAYS = {
    "DAY": 1,
    "MONTH": 30,
    "YEAR": 365,
}

_UNSIGNED_INT = re.compile(r"^\d+$")


class SqlValidator:
    """
    清理语句安全校验器。

    参数:
        policy: 安全模式配置，使用其中的 retention_days
    """

    def __init__(self, policy: SafeModeConfig):
        self.policy = policy

    @property
    def retention_days(self) -> int:
        return self.policy.retention_days

    def validate(self, sql: str) -> None:
        """
        校验 SQL，不合格时抛出 QueryValidationError（消息为拒绝原因）。
        """
        try:
            statements = [s for s in sqlglot.parse(sql, read="mysql") if s is not None]
        except SqlglotError as e:
            raise QueryValidationError(f"Failed to parse SQL: {e}") from e

        if len(statements) != 1:
            raise QueryValidationError(
                f"Only a single SQL statement is allowed, got {len(statements)}"
            )

        statement = statements[0]
        if not isinstance(statement, exp.Delete):
            raise QueryValidationError(
                f"Only DELETE statements are allowed, got {statement.key.upper()}"
            )

        where = statement.args.get("where")
        if where is None or where.this is None:
            raise QueryValidationError("DELETE statement must have a WHERE clause")

        if _has_non_numeric_interval(sqlglot.tokenize(sql, read="mysql")):
            raise QueryValidationError(
                f"INTERVAL amounts in {BOUND_FUNCTION} must be unquoted integer literals"
            )

        if not self.contains_bound(where.this):
            raise QueryValidationError(
                f"DELETE statement must bound deleted rows with "
                f"{BOUND_FUNCTION}(..., INTERVAL n DAY|MONTH|YEAR) covering at least "
                f"{self.retention_days} days"
            )

        logger.debug(f"SQL passed safety validation (retention_days={self.retention_days})")

    def is_safe(self, sql: str) -> bool:
        """validate() 的布尔版本。"""
        try:
            self.validate(sql)
        except QueryValidationError:
            return False
        return True

    def contains_bound(self, node: exp.Expression) -> bool:
        """
        递归搜索合格的 DATE_SUB 调用。

        只会穿过 AND、<、<= 和 IN (子查询)，其他节点（OR、=、括号等）一律视为不可达。
        """
        if isinstance(node, (exp.And, exp.LT, exp.LTE)):
            return self.contains_bound(node.left) or self.contains_bound(node.right)

        if isinstance(node, (exp.DateSub, exp.Anonymous)):
            return self._is_qualifying_call(node)

        if isinstance(node, exp.Not) and isinstance(node.this, exp.In):
            # NOT IN (子查询) 与 IN 一样处理
            return self.contains_bound(node.this)

        if isinstance(node, exp.In):
            query = node.args.get("query")
            if query is None:
                return False
            return self.contains_bound(node.this) or self._select_contains_bound(query)

        return False

    def _select_contains_bound(self, query: exp.Expression) -> bool:
        """检查子查询的 WHERE，以及 FROM 中派生表（嵌套子查询）的 WHERE。"""
        if isinstance(query, exp.Subquery):
            query = query.this
        if not isinstance(query, exp.Select):
            return False

        where = query.args.get("where")
        if where is not None and where.this is not None and self.contains_bound(where.this):
            return True

        # 较新的 sqlglot 把 FROM 存在 "from_" 键下
        from_ = query.args.get("from") or query.args.get("from_")
        if from_ is None:
            return False
        sources = [from_.this, *from_.expressions] if from_.this is not None else list(from_.expressions)
        return any(
            isinstance(source, exp.Subquery) and self._select_contains_bound(source)
            for source in sources
        )

    def _is_qualifying_call(self, node: exp.Expression) -> bool:
        """判断函数调用是否为 DATE_SUB 且带有满足保留期的 INTERVAL 参数。"""
        if isinstance(node, exp.DateSub):
            amount = node.expression
            unit = node.args.get("unit")
            if isinstance(amount, exp.Interval):
                amount, unit = amount.this, amount.args.get("unit")
            days = self._interval_days(amount, unit)
            return days is not None and days >= self.retention_days

        # 未被 sqlglot 识别的写法会退化为 Anonymous 函数
        if node.name.upper() != BOUND_FUNCTION:
            return False
        for arg in node.expressions:
            if isinstance(arg, exp.Interval):
                days = self._interval_days(arg.this, arg.args.get("unit"))
                if days is not None and days >= self.retention_days:
                    return True
        return False

    @staticmethod
    def _interval_days(amount: exp.Expression | None, unit: exp.Expression | None) -> int | None:
        """把 INTERVAL 折算为天数；数值不是非负整数字面量或单位不支持时返回 None。"""
        if not isinstance(amount, exp.Literal) or unit is None:
            return None
        if not _UNSIGNED_INT.match(amount.name):
            return None
        factor = UNIT_DAYS.get(unit.name.upper())
        if factor is None:
            return None
        return int(amount.name) * factor


def _has_non_numeric_interval(tokens: list[Token]) -> bool:
    """DATE_SUB 参数中是否有 INTERVAL 后面不是数字 token（如 '30'、'30 DAY'、-30）。"""
    open_calls: list[int] = []  # 每个未闭合 DATE_SUB 调用的参数所在括号深度
    depth = 0
    for i, token in enumerate(tokens):
        if token.token_type == TokenType.L_PAREN:
            depth += 1
            if i > 0 and tokens[i - 1].text.upper() == BOUND_FUNCTION:
                open_calls.append(depth)
        elif token.token_type == TokenType.R_PAREN:
            if open_calls and open_calls[-1] == depth:
                open_calls.pop()
            depth -= 1
        elif token.token_type == TokenType.INTERVAL and open_calls and open_calls[-1] == depth:
            following = tokens[i + 1] if i + 1 < len(tokens) else None
            if following is None or following.token_type != TokenType.NUMBER:
                return True
    return False
