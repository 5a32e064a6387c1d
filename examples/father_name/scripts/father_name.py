# Copies each person's father's name into a "fatherName" property in the
# graph store. args[0] is the store connection string.
#
# Writes are buffered on the worker's connection and committed once, after
# cleanup(), so a retried partition never writes twice.


def setup(args):
    store.open({"url": args[0]})


def map(vertex, args):
    fathers = vertex.out("father")
    if not fathers:
        return
    father = store.connection.get_vertex(fathers[0])
    if father is not None:
        store.connection.set_property(vertex.id, "fatherName", father.get("name"))


def cleanup(args):
    pass
