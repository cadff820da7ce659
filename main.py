import marimo

__generated_with = "0.18.3"
app = marimo.App()


@app.cell
def _():
    import snapvault as sv
    from snapvault.impl.memory import MemoryFileSystem, MemoryStorage
    from IPython.lib.pretty import pprint
    return MemoryFileSystem, MemoryStorage, pprint, sv


@app.cell
def _(MemoryFileSystem, MemoryStorage, sv):
    fs = MemoryFileSystem()
    r = sv.create_memory_repository(MemoryStorage(), fs)
    return fs, r


@app.cell
def _(pprint, r):
    pprint(r)
    return


@app.cell
def _(fs, r):
    fs.write("a.txt", b"1\n")
    r.add("a.txt")
    r.commit("A")
    r.new_branch("feature")
    return


@app.cell
def _(fs, r):
    r.checkout_branch("feature")
    fs.write("a.txt", b"2\n")
    r.add("a.txt")
    r.commit("B")
    r.checkout_branch("master")
    fs.write("a.txt", b"3\n")
    r.add("a.txt")
    r.commit("C")
    return


@app.cell
def _(pprint, r):
    result = r.merge("feature")
    pprint(result.report())
    return


@app.cell
def _(fs, pprint):
    pprint(fs)
    return


if __name__ == "__main__":
    app.run()
