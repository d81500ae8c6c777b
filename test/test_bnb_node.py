import itertools

import pytest

from bnb_node import BranchNode, ItemFixing
from l2_relaxation import L2RelaxedFormulation


def test_root_starts_free():
    root = BranchNode(0, num_items=4, bound=50.0)
    assert root.is_root
    assert root.depth == 0
    assert root.free_items() == [0, 1, 2, 3]
    assert root.status == 'open'


def test_node_requires_size():
    with pytest.raises(ValueError):
        BranchNode(0)


def test_children_extend_path_and_depth():
    root = BranchNode(0, num_items=3, bound=20.0)
    right = root.child(1, 2, ItemFixing.FORCED_IN)
    left = right.child(2, 0, ItemFixing.FORCED_OUT)
    assert right.path == 'r' and left.path == 'rl'
    assert left.depth == 2
    assert left.parent_id == 1
    assert left.bound == 20.0
    assert left.forced_in_items() == [2]
    assert left.forced_out_items() == [0]
    assert left.is_consistent_extension_of(right)
    assert not right.is_consistent_extension_of(left)


def test_conflicting_fixing_raises():
    node = BranchNode(0, num_items=2).child(1, 0, ItemFixing.FORCED_IN)
    with pytest.raises(ValueError):
        node.child(2, 0, ItemFixing.FORCED_OUT)
    # same fixing again is allowed
    assert node.with_fixings({0: ItemFixing.FORCED_IN})[0] == ItemFixing.FORCED_IN


def test_fixing_to_free_raises():
    with pytest.raises(ValueError):
        BranchNode(0, num_items=2).with_fixings({1: ItemFixing.FREE})


def test_repr_mentions_root_path():
    assert "'root'" in repr(BranchNode(0, num_items=1, bound=3.0))


def _admits(node, selection):
    """True if the 0/1 item selection respects every fixing of node."""
    for fixing, chosen in zip(node.fixings, selection):
        if fixing == ItemFixing.FORCED_IN and not chosen:
            return False
        if fixing == ItemFixing.FORCED_OUT and chosen:
            return False
    return True


def test_in_and_out_children_partition_parent(small_instance, highs):
    parent = BranchNode(0, num_items=small_instance.num_items).child(1, 4, ItemFixing.FORCED_IN)
    out_child = parent.child(2, 1, ItemFixing.FORCED_OUT)
    in_child = parent.child(3, 1, ItemFixing.FORCED_IN)

    assert out_child.fixing(1) != in_child.fixing(1)
    for j in range(small_instance.num_items):
        if j != 1:
            assert out_child.fixing(j) == in_child.fixing(j) == parent.fixing(j)

    formulation = L2RelaxedFormulation(small_instance, highs)
    t_in = formulation.build_program(in_child)[1][1]
    t_out = formulation.build_program(out_child)[1][1]
    assert (t_in.lower_bound, t_in.upper_bound) == (1.0, 1.0)
    assert (t_out.lower_bound, t_out.upper_bound) == (0.0, 0.0)

    for selection in itertools.product((0, 1), repeat=small_instance.num_items):
        if _admits(parent, selection):
            assert _admits(in_child, selection) != _admits(out_child, selection)
        else:
            assert not _admits(in_child, selection) and not _admits(out_child, selection)
