"""SQL 模板渲染 - 基于 Jinja2，把 {{ name }} 占位符替换为参数值。

引用未定义的变量会直接报错（StrictUndefined），而不是渲染成空字符串，
避免生成一条语义被悄悄改变的 DELETE 语句。
"""

from datetime import datetime
from typing import Mapping

from jinja2 import Environment, StrictUndefined, TemplateError

from kiyoshi.errors import RenderError
from kiyoshi.utils.helpers import format_timestamp


class TemplateEngine:
    """SQL 模板引擎。"""

    def __init__(self):
        self.env = Environment(undefined=StrictUndefined, autoescape=False, keep_trailing_newline=True)

    def render(
        self,
        template: str,
        parameters: Mapping[str, str],
        data_interval_end: datetime | str,
    ) -> str:
        """
        渲染 SQL 模板。

        参数:
            template: 模板文本
            parameters: 参数名 → 字面值
            data_interval_end: 本次触发的逻辑时间，datetime 会格式化为 "YYYY-MM-DD HH:MM:SS"

        返回:
            渲染后的 SQL

        异常:
            RenderError: 模板语法错误或引用了未定义的变量
        """
        if isinstance(data_interval_end, datetime):
            data_interval_end = format_timestamp(data_interval_end)

        context = dict(parameters)
        context["data_interval_end"] = data_interval_end

        try:
            return self.env.from_string(template).render(context)
        except TemplateError as e:
            raise RenderError(f"Failed to render template: {e}") from e
