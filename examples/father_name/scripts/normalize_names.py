# Strips the "#<id>" suffix the generator adds and title-cases the name.
# Output is materialized and read by the next job.


def setup(args):
    pass


def map(vertex, args):
    name = vertex.get("name", "")
    return {"name": name.split("#")[0].strip().title()}


def cleanup(args):
    pass
