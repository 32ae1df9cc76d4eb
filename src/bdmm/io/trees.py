"""
Type-annotated (multi-type) phylogenetic trees.
"""

import re
from dataclasses import dataclass, field
from typing import Optional, Sequence

# Tips closer than this to the present count as contemporaneous
PRESENT_TOLERANCE = 1e-10


@dataclass
class MigrationEvent:
    """
    A recorded type change on a branch.

    Attributes
    ----------
    time : float
        Height (time before present) of the change
    type : int
        Type of the lineage above the change, towards the root
    """

    time: float
    type: int


@dataclass(eq=False)
class TypedNode:
    """
    Node of a type-annotated tree.

    Attributes
    ----------
    id : int
        Node number; leaves are numbered first
    type : int
        Type of the lineage at this node
    height : float
        Time before present
    name : Optional[str]
        Taxon name (for leaves)
    parent : Optional[TypedNode]
        Parent node
    children : list[TypedNode]
        Child nodes
    events : list[MigrationEvent]
        Type changes on the branch above this node, by increasing height
    """

    id: int
    type: int
    height: float = 0.0
    name: Optional[str] = None
    parent: Optional["TypedNode"] = field(default=None, repr=False)
    children: list["TypedNode"] = field(default_factory=list, repr=False)
    events: list[MigrationEvent] = field(default_factory=list)

    @property
    def is_leaf(self) -> bool:
        """Check if node is a leaf."""
        return len(self.children) == 0

    @property
    def is_root(self) -> bool:
        return self.parent is None

    @property
    def is_direct_ancestor(self) -> bool:
        """A sampled ancestor: a leaf on a zero-length branch."""
        return self.is_leaf and self.parent is not None and self.parent.height == self.height

    @property
    def change_count(self) -> int:
        return len(self.events)

    @property
    def type_at_top(self) -> int:
        """Type of the branch just below the parent."""
        return self.events[-1].type if self.events else self.type


def iter_postorder(node: TypedNode) -> list[TypedNode]:
    """
    Nodes of the subtree below ``node`` in post-order, children in stored order.

    Uses an explicit stack, so arbitrarily deep trees are fine.
    """
    result = []
    stack = [(node, False)]
    while stack:
        current, expanded = stack.pop()
        if expanded:
            result.append(current)
            continue
        stack.append((current, True))
        for child in reversed(current.children):
            stack.append((child, False))
    return result


def _types_in_range(types, n_types: int) -> bool:
    return all(0 <= t < n_types for t in types)


@dataclass
class OriginBranch:
    """
    Unobserved pseudo-branch from the root up to the origin.

    Attributes
    ----------
    origin : float
        Height of the origin (time before present)
    events : list[MigrationEvent]
        Type changes above the root, by increasing height
    """

    origin: float
    events: list[MigrationEvent] = field(default_factory=list)

    @property
    def change_count(self) -> int:
        return len(self.events)

    def type_at_origin(self, root: TypedNode) -> int:
        """Type of the lineage at the origin."""
        return self.events[-1].type if self.events else root.type

    def types_in_range(self, n_types: int) -> bool:
        """True if every event type is a valid index below ``n_types``."""
        return _types_in_range((event.type for event in self.events), n_types)

    def is_valid(self, root: TypedNode) -> bool:
        """
        Check the origin-branch history against the tree root.

        Returns False if the origin is below the root, an event lies below
        the root or above the origin, events are out of order, the first
        event does not change the root's type, or two consecutive events
        share a type.
        """
        if self.origin < root.height:
            return False
        if not self.events:
            return True
        if self.events[0].time < root.height or self.events[-1].time > self.origin:
            return False
        if self.events[0].type == root.type:
            return False
        for below, above in zip(self.events, self.events[1:]):
            if above.time <= below.time or above.type == below.type:
                return False
        return True


@dataclass
class TypedTree:
    """
    Rooted binary tree whose nodes and branches carry types.

    Attributes
    ----------
    root : TypedNode
        Root node of the tree
    n_nodes : int
        Total number of nodes
    n_leaves : int
        Number of leaf nodes
    leaf_names : list[str]
        Names of leaf nodes, in node-number order
    """

    root: TypedNode
    n_nodes: int
    n_leaves: int
    leaf_names: list[str]

    @classmethod
    def from_root(cls, root: TypedNode) -> "TypedTree":
        """
        Wrap an already-built node hierarchy, fixing parent links.

        Parameters
        ----------
        root : TypedNode
            Root of the hierarchy

        Returns
        -------
        TypedTree
            Tree over the given nodes
        """
        root.parent = None
        nodes = iter_postorder(root)
        for node in nodes:
            for child in node.children:
                child.parent = node
        leaves = sorted((n for n in nodes if n.is_leaf), key=lambda n: n.id)
        return cls(
            root=root,
            n_nodes=len(nodes),
            n_leaves=len(leaves),
            leaf_names=[n.name if n.name else str(n.id) for n in leaves],
        )

    @classmethod
    def from_newick(
        cls, newick_string: str, type_labels: Optional[Sequence[str]] = None
    ) -> "TypedTree":
        """
        Parse an extended Newick string with type annotations.

        Every node carries a ``[&type=...]`` comment. Type changes are written
        as single-child nodes at the time of the change, annotated with the
        type above the change; they are folded into the ``events`` of the
        node below.

        Parameters
        ----------
        newick_string : str
            Newick format tree, e.g.
            ``((A[&type=0]:1.0)[&type=1]:0.5,B[&type=1]:1.5)[&type=1];``
        type_labels : sequence of str, optional
            Names of the types; annotation values are looked up here. Without
            it, annotation values must be integers.

        Returns
        -------
        TypedTree
            Parsed tree

        Raises
        ------
        ValueError
            If the string is not valid Newick or a type annotation is missing
        """
        newick = re.sub(r'//.*', '', newick_string).strip()
        if ';' not in newick:
            raise ValueError("Invalid Newick format: missing semicolon")
        tree_line = newick[: newick.index(';')]
        tree_line = tree_line.replace('\n', '').replace('\t', '').replace('\r', '')
        if not tree_line.strip():
            raise ValueError("Invalid Newick format: no tree found")

        def skip_whitespace(s: str, pos: int) -> int:
            """Skip whitespace characters."""
            while pos < len(s) and s[pos] in ' \t\n\r':
                pos += 1
            return pos

        def parse_annotation(s: str, pos: int, node: "_RawNode") -> int:
            """Parse a ``[&key=value,...]`` comment starting at ``[``."""
            end = s.find(']', pos)
            if end < 0:
                raise ValueError(f"Unterminated annotation at position {pos}")
            body = s[pos + 1 : end]
            if body.startswith('&'):
                for key, value in re.findall(r'([^=,&\s]+)\s*=\s*("[^"]*"|\{[^}]*\}|[^,]*)', body):
                    node.annotations[key.strip()] = value.strip().strip('"\'')
            return end + 1

        def parse_tree(s: str) -> tuple["_RawNode", int]:
            """Parse the whole tree, keeping unfinished internal nodes on a stack."""
            open_nodes = []
            pos = skip_whitespace(s, 0)
            while True:
                if pos < len(s) and s[pos] == '(':
                    open_nodes.append(_RawNode())
                    pos = skip_whitespace(s, pos + 1)
                    continue

                node = _RawNode()
                pos = parse_label(s, pos, node)
                while True:
                    if not open_nodes:
                        return node, pos
                    open_nodes[-1].children.append(node)
                    if pos < len(s) and s[pos] == ',':
                        pos = skip_whitespace(s, pos + 1)
                        break
                    elif pos < len(s) and s[pos] == ')':
                        node = open_nodes.pop()
                        pos = parse_label(s, skip_whitespace(s, pos + 1), node)
                    else:
                        raise ValueError(f"Expected ',' or ')' at position {pos}")

        def parse_label(s: str, pos: int, node: "_RawNode") -> int:
            """Parse the name, annotation and branch length following a node."""
            name_start = pos
            if pos < len(s) and s[pos] in '\'"':
                quote = s[pos]
                close = s.find(quote, pos + 1)
                if close < 0:
                    raise ValueError(f"Unterminated quoted name at position {pos}")
                node.name = s[pos + 1 : close]
                pos = close + 1
            else:
                while pos < len(s) and s[pos] not in ',:();[ \t\n\r':
                    pos += 1
                if pos > name_start:
                    node.name = s[name_start:pos]

            pos = skip_whitespace(s, pos)
            if pos < len(s) and s[pos] == '[':
                pos = skip_whitespace(s, parse_annotation(s, pos, node))

            if pos < len(s) and s[pos] == ':':
                pos = skip_whitespace(s, pos + 1)
                length_start = pos
                while pos < len(s) and s[pos] not in ',();[ \t\n\r':
                    pos += 1
                try:
                    node.branch_length = float(s[length_start:pos])
                except ValueError:
                    raise ValueError(f"Invalid branch length: {s[length_start:pos]}")
                pos = skip_whitespace(s, pos)
                # some writers put the annotation after the branch length
                if pos < len(s) and s[pos] == '[':
                    pos = skip_whitespace(s, parse_annotation(s, pos, node))

            return pos

        raw_root, pos = parse_tree(tree_line)
        if skip_whitespace(tree_line, pos) != len(tree_line):
            raise ValueError(f"Unexpected characters after tree at position {pos}")
        if len(raw_root.children) == 1:
            raise ValueError("The root cannot be a type-change node")

        def parse_type(raw: "_RawNode") -> int:
            value = raw.annotations.get('type')
            if value is None:
                label = raw.name if raw.name else "internal node"
                raise ValueError(f"Missing type annotation on {label}")
            if type_labels is not None:
                try:
                    return list(type_labels).index(value)
                except ValueError:
                    raise ValueError(f"Unknown type label '{value}'")
            try:
                return int(value)
            except ValueError:
                raise ValueError(
                    f"Non-integer type '{value}'; pass type_labels to map names to indices"
                )

        raw_root.depth = 0.0
        max_depth = 0.0
        stack = [raw_root]
        while stack:
            raw = stack.pop()
            max_depth = max(max_depth, raw.depth)
            for child in raw.children:
                child.depth = raw.depth + child.branch_length
                stack.append(child)

        def new_node(raw: "_RawNode") -> TypedNode:
            return TypedNode(id=-1, type=parse_type(raw), height=max_depth - raw.depth, name=raw.name)

        root = new_node(raw_root)
        stack = [(raw_root, root)]
        while stack:
            raw, node = stack.pop()
            for child_raw in raw.children:
                chain = []
                below = child_raw
                while len(below.children) == 1:
                    chain.append(below)
                    below = below.children[0]
                child = new_node(below)
                child.events = [
                    MigrationEvent(time=max_depth - c.depth, type=parse_type(c))
                    for c in reversed(chain)
                ]
                child.parent = node
                node.children.append(child)
                stack.append((below, child))

        # BEAST numbering: leaves first in reading order, then internals in post-order
        ordered = iter_postorder(root)
        leaves = [n for n in ordered if n.is_leaf]
        internals = [n for n in ordered if not n.is_leaf]
        for i, node in enumerate(leaves + internals):
            node.id = i

        return cls(
            root=root,
            n_nodes=len(ordered),
            n_leaves=len(leaves),
            leaf_names=[n.name if n.name else str(n.id) for n in leaves],
        )

    def postorder(self) -> list[TypedNode]:
        """
        Return nodes in post-order traversal (leaves to root).

        Returns
        -------
        list[TypedNode]
            Nodes in post-order
        """
        return iter_postorder(self.root)

    def leaves(self) -> list[TypedNode]:
        return [node for node in self.postorder() if node.is_leaf]

    def get_node(self, node_id: int) -> TypedNode:
        for node in self.postorder():
            if node.id == node_id:
                return node
        raise KeyError(f"No node with id {node_id}")

    @property
    def direct_ancestor_count(self) -> int:
        return sum(1 for node in self.leaves() if node.is_direct_ancestor)

    @property
    def n_events(self) -> int:
        """Total number of recorded type changes."""
        return sum(node.change_count for node in self.postorder())

    @property
    def types(self) -> list[int]:
        """Every node and branch-event type in the tree, in post-order."""
        out = []
        for node in self.postorder():
            out.append(node.type)
            out.extend(event.type for event in node.events)
        return out

    def types_in_range(self, n_types: int) -> bool:
        """True if every node and event type is a valid index below ``n_types``."""
        return _types_in_range(self.types, n_types)

    def contemporaneous_tip_count(self) -> int:
        """Number of tips sampled at the present."""
        return sum(1 for node in self.leaves() if abs(node.height) < PRESENT_TOLERANCE)

    def is_valid(self) -> bool:
        """
        Check that the type history is consistent.

        Every internal node must have two children. Along each branch, events
        must lie strictly between the node and its parent in increasing
        order, each event must change the type, and the type reaching the
        top of the branch must be the parent's type.

        Returns
        -------
        bool
            True if the coloring is consistent
        """
        for node in self.postorder():
            if not node.is_leaf and len(node.children) != 2:
                return False
            if node.is_root:
                if node.events:
                    return False
                continue

            parent = node.parent
            if node.height > parent.height:
                return False
            lower_time, lower_type = node.height, node.type
            for event in node.events:
                if not (lower_time < event.time < parent.height):
                    return False
                if event.type == lower_type:
                    return False
                lower_time, lower_type = event.time, event.type
            if lower_type != parent.type:
                return False
        return True


@dataclass(eq=False)
class _RawNode:
    """Parsed Newick node before type changes are folded into branches."""

    name: Optional[str] = None
    branch_length: float = 0.0
    depth: float = 0.0
    children: list["_RawNode"] = field(default_factory=list)
    annotations: dict = field(default_factory=dict)
