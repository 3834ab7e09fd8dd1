from pathlib import Path
from typing import Optional
import logging
import shlex
import subprocess

from Bio.SeqIO import parse

from .config import SubsampleConfig


class ToolError(RuntimeError):

    def __init__(
        self,
        command: list[str],
        returncode: int,
        stage: Optional[str] = None,
        path: Optional[str | Path] = None,
    ) -> None:
        """
        An external tool exited with a non-zero status, or could not be started.

        Args:
            command: The command that was run.
            returncode: Its exit status. 127 if the executable could not be found.
            stage: The pipeline stage that ran the command.
            path: The file being processed.
        """
        super().__init__(command, returncode, stage, path)
        self.command = command
        self.returncode = returncode
        self.stage = stage
        self.path = path

    def __str__(self):
        where = f"{self.stage} failed" if self.stage else "command failed"
        if self.path is not None:
            where += f" for {self.path}"
        return f"{where} (exit status {self.returncode}): {shlex.join(map(str, self.command))}"


def run_tool(command: list, stage: str, path: str | Path, stdout=None) -> None:
    """
    Run an external tool, raising ToolError if it fails.

    Args:
        command: Command and arguments. Paths are converted to str.
        stage: Name of the pipeline stage, used in error messages.
        path: The file being processed, used in error messages.
        stdout: Optional file object that receives the tool's standard output.
    """
    command = [str(arg) for arg in command]
    logging.debug(f"running: {shlex.join(command)}")
    try:
        subprocess.run(command, stdout=stdout, check=True)
    except FileNotFoundError as err:
        raise ToolError(command, 127, stage=stage, path=path) from err
    except subprocess.CalledProcessError as err:
        raise ToolError(command, err.returncode, stage=stage, path=path) from err


class AugurIndexer:

    def __init__(self, executable: str = "augur") -> None:
        self.executable = executable

    def __repr__(self):
        return f"AugurIndexer(executable={self.executable})"

    def command(self, sequence_path: Path, output_path: Path) -> list[str]:
        return [
            self.executable,
            "index",
            "--sequences",
            str(sequence_path),
            "--output",
            str(output_path),
        ]

    def index(self, sequence_path: Path, output_path: Path) -> Path:
        """
        Index a fasta file.

        Args:
            sequence_path: The fasta file to index.
            output_path: Where augur writes the index.

        Returns:
            output_path
        """
        run_tool(self.command(sequence_path, output_path), "indexing", sequence_path)
        return Path(output_path)


class AugurSubsampler:

    def __init__(self, executable: str = "augur") -> None:
        self.executable = executable

    def __repr__(self):
        return f"AugurSubsampler(executable={self.executable})"

    def command(
        self,
        sequences: Path,
        sequence_index: Path,
        metadata: Path,
        output: Path,
        config: SubsampleConfig,
    ) -> list[str]:
        return [
            self.executable,
            "filter",
            "--sequences",
            str(sequences),
            "--sequence-index",
            str(sequence_index),
            "--metadata",
            str(metadata),
            "--min-date",
            str(config.min_date),
            "--group-by",
            config.group_by,
            "--subsample-max-sequences",
            str(config.max_per_group),
            "--probabilistic-sampling",
            "--include-where",
            config.include_where,
            "--output-sequences",
            str(output),
            "--subsample-seed",
            str(config.seed),
        ]

    def subsample(
        self,
        sequences: Path,
        sequence_index: Path,
        metadata: Path,
        output: Path,
        config: SubsampleConfig,
    ) -> Path:
        """
        Probabilistically subsample sequences by group with augur filter.

        The seed in config is passed through to augur, so identical inputs give an
        identical selection.

        Returns:
            output
        """
        command = self.command(sequences, sequence_index, metadata, output, config)
        run_tool(command, "subsampling", sequences)
        return Path(output)


class SeqkitIdLister:

    def __init__(self, executable: str = "seqkit") -> None:
        self.executable = executable

    def __repr__(self):
        return f"SeqkitIdLister(executable={self.executable})"

    def command(self, fasta_path: Path) -> list[str]:
        return [self.executable, "seq", "-n", str(fasta_path)]

    def list_ids(self, fasta_path: Path, output_path: Path) -> Path:
        """
        Write the header of each record in fasta_path to output_path, one per line, in
        file order.
        """
        with open(output_path, "w") as fobj:
            run_tool(self.command(fasta_path), "extracting sequence ids", fasta_path, fobj)
        return Path(output_path)


class BiopythonIdLister:
    """
    Lists headers like `seqkit seq -n` without needing seqkit.
    """

    def __repr__(self):
        return "BiopythonIdLister()"

    def list_ids(self, fasta_path: Path, output_path: Path) -> Path:
        with open(fasta_path) as fin, open(output_path, "w") as fout:
            for record in parse(fin, "fasta"):
                fout.write(f"{record.description}\n")
        return Path(output_path)


class Toolchain:

    def __init__(self, indexer, subsampler, id_lister) -> None:
        """
        The external collaborators a pipeline runs.

        Args:
            indexer: Has an index(sequence_path, output_path) method.
            subsampler: Has a subsample(sequences, sequence_index, metadata, output,
                config) method.
            id_lister: Has a list_ids(fasta_path, output_path) method.
        """
        self.indexer = indexer
        self.subsampler = subsampler
        self.id_lister = id_lister

    def __repr__(self):
        return (
            f"Toolchain(indexer={self.indexer}, subsampler={self.subsampler}, "
            f"id_lister={self.id_lister})"
        )

    @classmethod
    def from_config(cls, config: SubsampleConfig) -> "Toolchain":
        if config.id_lister == "biopython":
            id_lister = BiopythonIdLister()
        else:
            id_lister = SeqkitIdLister(config.seqkit)
        return cls(
            indexer=AugurIndexer(config.augur),
            subsampler=AugurSubsampler(config.augur),
            id_lister=id_lister,
        )
