__all__ = ["lazy", "dump_hex"]


class lazy:
    """
    Defer formatting of a log argument until the record is actually emitted.

    ``logger.trace("data=<%s>", lazy(lambda: data.hex()))`` costs one closure when TRACE
    is disabled, instead of a full hex conversion of ``data``.
    """

    __slots__ = ["_thunk_"]

    def __init__(self, thunk):
        self._thunk_ = thunk

    def __str__(self):
        return str(self._thunk_())

    def __repr__(self):
        return f"<lazy {self._thunk_!r}>"


def dump_hex(data):
    def to_hex(data):
        try:
            data = memoryview(data)
        except TypeError:
            data = memoryview(bytes(data))
        if dump_hex.limit is None or len(data) < dump_hex.limit:
            return data.hex()
        else:
            return "{}... ({} bytes total)".format(
                data[:dump_hex.limit].hex(), len(data))
    return lazy(lambda: to_hex(data))

dump_hex.limit = 64
