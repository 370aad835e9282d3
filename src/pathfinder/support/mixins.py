import threading


def quote(val):
    return "'" + str(val) + "'" if val is not None else "None"


class StringerMixin:
    """ renders the class name and the public attributes in key sorted order. """

    def __repr__(self):
        return type(self).__name__ + self._sorted_items_string()

    def _sorted_items_string(self):
        return "{" + ", ".join(["'" + key + "': " + quote(val)
                                for key, val in sorted(self.__dict__.items())
                                if not key.startswith('_')]) + "}"


class CommonEqualityMixin:
    """  a deep equals comparison for value objects. """
    local = threading.local()

    def __eq__(self, other):
        if not hasattr(CommonEqualityMixin.local, 'seen'):
            CommonEqualityMixin.local.seen = []
        seen = CommonEqualityMixin.local.seen
        return isinstance(other, self.__class__) and hasattr(other, '__dict__') \
            and self._dicts_equal(other, seen)

    def _dicts_equal(self, other, seen):
        pair = (id(self), id(other))
        if pair in seen:
            raise ValueError("recursive comparison of %s" % type(self).__name__)
        seen.append(pair)
        try:
            return self.__dict__ == other.__dict__
        finally:
            seen.pop()

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash(tuple(sorted((k, repr(v)) for k, v in self.__dict__.items())))
