"""
基于 tree-sitter 的声明提取（进程内，不依赖外部工具）。

只提取“声明头”：import/export、函数、类、方法、接口、类型、常量。
函数体不展开、不下钻，保证输出里没有语句级实现细节。
不支持的语言/解析失败返回空列表，由上层决定如何降级。
"""

from __future__ import annotations

import logging

from tree_sitter import Node
from tree_sitter_language_pack import get_parser

from reviewctx.analysis.languages import infer_language_from_path
from reviewctx.analysis.models import StructureEntry

logger = logging.getLogger(__name__)

MAX_SIGNATURE_CHARS = 200

# 每种语言：节点类型 -> 声明种类
_JS_FAMILY: dict[str, str] = {
    "import_statement": "import",
    "function_declaration": "function",
    "generator_function_declaration": "function",
    "class_declaration": "class",
    "abstract_class_declaration": "class",
    "method_definition": "method",
    "interface_declaration": "interface",
    "type_alias_declaration": "type",
    "enum_declaration": "type",
    "lexical_declaration": "const",
    "public_field_definition": "property",
}

DECLARATION_KINDS: dict[str, dict[str, str]] = {
    "python": {
        "import_statement": "import",
        "import_from_statement": "import",
        "function_definition": "function",
        "class_definition": "class",
    },
    "javascript": _JS_FAMILY,
    "typescript": _JS_FAMILY,
    "tsx": _JS_FAMILY,
    "go": {
        "import_declaration": "import",
        "function_declaration": "function",
        "method_declaration": "method",
        "type_spec": "type",
        "const_declaration": "const",
    },
    "java": {
        "import_declaration": "import",
        "class_declaration": "class",
        "interface_declaration": "interface",
        "enum_declaration": "type",
        "method_declaration": "method",
        "constructor_declaration": "method",
    },
    "rust": {
        "use_declaration": "import",
        "function_item": "function",
        "struct_item": "class",
        "enum_item": "type",
        "trait_item": "interface",
        "type_item": "type",
        "const_item": "const",
        "impl_item": "class",
    },
}

# 这些种类的节点还要继续往里找（例如类里的方法）
_CONTAINER_KINDS = {"class", "interface"}
# 这些语句块里只认“模块级”常量，函数体里的不算
_TOP_LEVEL_ONLY = {"lexical_declaration", "const_declaration", "const_item"}


def extract_declarations(path: str, content: str) -> list[StructureEntry]:
    """解析 `content`，按出现顺序返回声明列表。"""
    language = infer_language_from_path(path)
    kinds = DECLARATION_KINDS.get(language)
    if kinds is None or not content.strip():
        return []
    parser = _try_get_parser(language=language)
    if parser is None:
        return []

    source = content.encode("utf-8")
    tree = parser.parse(source)
    entries: list[StructureEntry] = []
    # (node, 是否在类/接口里, 是否在模块级)
    stack: list[tuple[Node, bool, bool]] = [(tree.root_node, False, True)]
    while stack:
        node, in_class, top_level = stack.pop()
        kind = kinds.get(node.type)
        if node.type == "export_statement" and node.child_by_field_name("declaration") is None:
            # `export { a, b }` / `export default x`：没有声明可下钻，整句作为 export
            kind = "export"
        if kind is not None and node.type in _TOP_LEVEL_ONLY and not top_level:
            kind = None
        if kind is not None and node.type == "lexical_declaration" and not _is_const(node):
            kind = None
        if kind is not None:
            if kind == "function" and in_class:
                kind = "method"
            entries.append(_to_entry(path=path, node=node, kind=kind, source=source))
            if kind in _CONTAINER_KINDS:
                body = node.child_by_field_name("body")
                if body is not None:
                    stack.extend((child, True, False) for child in reversed(body.children))
            continue
        child_top_level = top_level and node.type in {
            "program",
            "module",
            "source_file",
            "export_statement",
            "decorated_definition",
            "expression_statement",
        }
        stack.extend((child, in_class, child_top_level) for child in reversed(node.children))
    return entries


def _try_get_parser(language: str):
    try:
        return get_parser(language)
    except Exception as exc:  # 语言包里没有这个 parser
        logger.debug(f"tree-sitter parser unavailable for {language}: {exc}")
        return None


def _is_const(node: Node) -> bool:
    first = node.children[0] if node.children else None
    return first is not None and first.type == "const"


def _to_entry(path: str, node: Node, kind: str, source: bytes) -> StructureEntry:
    signature = _signature(node=node, source=source)
    return StructureEntry(
        name=_node_name(node=node, fallback=signature),
        kind=kind,
        file=path,
        line=node.start_point[0] + 1,
        signature=signature,
    )


def _signature(node: Node, source: bytes) -> str:
    """声明头：从节点开始截到 body（或常量的初始值）之前，压成一行。"""
    cut = node.child_by_field_name("body")
    if cut is None:
        declarator = _first_named_child(node, {"variable_declarator", "const_spec"})
        holder = declarator if declarator is not None else node
        cut = holder.child_by_field_name("value")
    end = cut.start_byte if cut is not None else node.end_byte
    text = source[node.start_byte : end].decode("utf-8", errors="replace")
    if cut is None:
        text = text.splitlines()[0] if text else ""
    signature = " ".join(text.split()).rstrip(" ={:")
    if len(signature) > MAX_SIGNATURE_CHARS:
        signature = signature[:MAX_SIGNATURE_CHARS] + "..."
    return signature


def _first_named_child(node: Node, types: set[str]) -> Node | None:
    for child in node.named_children:
        if child.type in types:
            return child
    return None


def _node_name(node: Node, fallback: str) -> str:
    name_node = node.child_by_field_name("name")
    if name_node is None:
        declarator = _first_named_child(node, {"variable_declarator", "const_spec"})
        if declarator is not None:
            name_node = declarator.child_by_field_name("name")
    if name_node is None or name_node.text is None:
        return fallback
    return name_node.text.decode("utf-8")
