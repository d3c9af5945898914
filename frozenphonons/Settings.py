"""
Parallel setup of the module.

When mpi4py is installed and more than one process is running, the
independent frames of a trajectory are split among the MPI processes.
Otherwise everything runs serially in the calling process.
"""

import numpy as np

try:
    import mpi4py
    import mpi4py.MPI
    __PARALLEL_TYPE__ = "mpi4py"
except ImportError:
    __PARALLEL_TYPE__ = "serial"


__SUPPORTED_LIBS__ = ["serial", "mpi4py"]
__NPROC__ = 1


def ParallelPrint(*args, **kwargs):
    """
    Print only if I am the master
    """
    if am_i_the_master():
        print(*args, **kwargs)


def am_i_the_master():
    return get_rank() == 0


def get_rank():
    """
    Get the rank of the process
    """
    if __PARALLEL_TYPE__ == "mpi4py":
        return mpi4py.MPI.COMM_WORLD.Get_rank()
    elif __PARALLEL_TYPE__ == "serial":
        return 0
    raise NotImplementedError("Error, I do not know what is the rank with the {} parallelization".format(__PARALLEL_TYPE__))


def GetNProc():
    """
    Number of processes that share the work of GoParallel.
    """
    if __PARALLEL_TYPE__ == "mpi4py":
        return mpi4py.MPI.COMM_WORLD.Get_size()
    return __NPROC__


def broadcast(list_of_values):
    """
    Broadcast the list to all the processors from the master.
    It returns a list equal for all the processors.
    """
    if __PARALLEL_TYPE__ == "mpi4py":
        comm = mpi4py.MPI.COMM_WORLD
        if comm.Get_size() == 1:
            return list_of_values
        return comm.bcast(list_of_values, root = 0)
    elif __PARALLEL_TYPE__ == "serial":
        return list_of_values
    raise NotImplementedError("broadcast not implemented for {} parallelization.".format(__PARALLEL_TYPE__))


def split_work(n_elements, n_proc, rank):
    """
    Return the (start, end) range of the elements assigned to rank.
    The first n_elements % n_proc processes get one element more.
    """
    n_per_proc = n_elements // n_proc
    n_left = n_elements - n_per_proc * n_proc
    if rank < n_left:
        start = rank * (n_per_proc + 1)
        end = start + n_per_proc + 1
    else:
        start = rank * n_per_proc + n_left
        end = start + n_per_proc
    return start, end


def GoParallel(function, list_of_inputs):
    """
    GO PARALLEL
    ===========

    Evaluate function on each element of list_of_inputs, splitting the list
    among the available processes, and return the results.

    The order of the results follows the order of list_of_inputs, on every process.

    Parameters
    ----------
        function : callable
            The function to be executed on each input.
        list_of_inputs : list
            The inputs (must be picklable when running with MPI).

    Results
    -------
        result : list
    """
    if not __PARALLEL_TYPE__ in __SUPPORTED_LIBS__:
        raise ValueError("Error, wrong parallelization type: %s\nSupported types: %s" % (__PARALLEL_TYPE__, " ".join(__SUPPORTED_LIBS__)))

    list_of_inputs = broadcast(list_of_inputs)
    start, end = split_work(len(list_of_inputs), GetNProc(), get_rank())
    result = [function(x) for x in list_of_inputs[start:end]]

    if __PARALLEL_TYPE__ == "serial" or GetNProc() == 1:
        return result

    comm = mpi4py.MPI.COMM_WORLD
    results = comm.allgather(result)

    # Flatten the list
    return [item for sublist in results for item in sublist]


def get_numpy_rng(seed = None):
    """
    Return a numpy random generator.
    With MPI all the processes receive the seed of the master, so that
    they draw the same numbers.
    """
    if __PARALLEL_TYPE__ == "mpi4py" and GetNProc() > 1:
        seed = broadcast(seed)
    return np.random.default_rng(seed)
