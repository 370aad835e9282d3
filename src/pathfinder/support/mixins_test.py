import unittest

from hamcrest import assert_that, calling, contains_string, equal_to, is_, is_not, raises

from pathfinder.support.mixins import CommonEqualityMixin, StringerMixin


class Value(CommonEqualityMixin, StringerMixin):
    def __init__(self, a, b=None):
        self.a = a
        self.b = b


class Other(CommonEqualityMixin):
    def __init__(self, a, b=None):
        self.a = a
        self.b = b


class CommonEqualityMixinTest(unittest.TestCase):
    def test_equal_when_attributes_equal(self):
        assert_that(Value(1, 'x'), is_(equal_to(Value(1, 'x'))))
        assert_that(hash(Value(1, 'x')), is_(hash(Value(1, 'x'))))

    def test_not_equal_when_attributes_differ(self):
        assert_that(Value(1, 'x'), is_not(equal_to(Value(2, 'x'))))
        assert_that(Value(1) != Value(2), is_(True))

    def test_not_equal_to_other_types(self):
        assert_that(Value(1), is_not(equal_to(Other(1))))
        assert_that(Value(1), is_not(equal_to(1)))

    def test_recursive_comparison_is_detected(self):
        v1 = Value(None)
        v2 = Value(None)
        v1.a = v2
        v2.a = v1
        assert_that(calling(v1.__eq__).with_args(v2), raises(ValueError))


class StringerMixinTest(unittest.TestCase):
    def test_repr_lists_public_attributes(self):
        v = Value(1, 'x')
        v._hidden = 3
        assert_that(repr(v), is_("Value{'a': '1', 'b': 'x'}"))

    def test_repr_shows_none(self):
        assert_that(repr(Value(1)), contains_string("'b': None"))
