"""
Memory Layout Model.

The linker script is modelled as an ordered list of memory regions and
section placement rules. The model is validated before a script is rendered,
so an ordering mistake (such as the vector table not being first in flash)
surfaces as a LayoutError instead of a firmware that does not boot.

Rendered layout for the default Cortex-M model:

    MEMORY
        FLASH (rx)  : ORIGIN = 0x00000000, LENGTH = 256K
        RAM   (rwx) : ORIGIN = 0x20000000, LENGTH = 32K

    SECTIONS
        .isr_vector     KEEP, first in FLASH
        .text           code and read-only data
        .init_array     KEEP(SORT(...)), __init_array_start/__init_array_end
        .fini_array     KEEP(SORT(...)), __fini_array_start/__fini_array_end
        .ARM.extab
        .ARM.exidx      __exidx_start/__exidx_end
        .data           in RAM, loaded from FLASH
        .bss            NOLOAD, end aligned to 8 bytes
        end        = first free RAM address (heap start)
        _stack_top = ORIGIN(RAM) + LENGTH(RAM)
"""

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..config.target_resolver import TargetConfiguration
from ..errors import LayoutError, LinkError

VECTOR_TABLE_SECTION = ".isr_vector"
BSS_SECTION = ".bss"
BSS_END_ALIGNMENT = 8

HEAP_START_SYMBOL = "end"
STACK_TOP_SYMBOL = "_stack_top"

# Array sections that startup code walks as function-pointer sequences
ARRAY_BOUNDS = {
    ".init_array": ("__init_array_start", "__init_array_end"),
    ".fini_array": ("__fini_array_start", "__fini_array_end"),
}


def format_hex(value: int) -> str:
    return f"0x{value:08X}"


def format_size(size_bytes: int) -> str:
    """Render a length the way ld scripts usually spell it."""
    if size_bytes and size_bytes % (1024 * 1024) == 0:
        return f"{size_bytes // (1024 * 1024)}M"
    if size_bytes and size_bytes % 1024 == 0:
        return f"{size_bytes // 1024}K"
    return str(size_bytes)


@dataclass(frozen=True)
class MemoryRegion:
    """A physical memory region of the target."""

    name: str
    origin: int
    length: int
    access: str = "rx"

    @property
    def end(self) -> int:
        """First address past the region."""
        return self.origin + self.length

    def overlaps(self, other: "MemoryRegion") -> bool:
        return self.origin < other.end and other.origin < self.end


@dataclass(frozen=True)
class SectionRule:
    """Placement of one output section.

    Attributes:
        name: Output section name
        patterns: Input section patterns collected, in order
        region: Region the section runs from (VMA)
        load_region: Region the section is loaded into, if different (LMA)
        align: Alignment at the start of the section
        keep: Exempt the collected input sections from --gc-sections
        sort: Collect input sections sorted by name (priority suffix)
        noload: Section occupies no space in the loaded image
        start_symbol: Symbol exported at the start of the section
        end_symbol: Symbol exported at the end of the section
        align_end: Alignment applied before the end symbol
        load_symbol: Symbol exported at the load address (LMA) of the section
    """

    name: str
    patterns: Tuple[str, ...]
    region: str
    load_region: Optional[str] = None
    align: int = 4
    keep: bool = False
    sort: bool = False
    noload: bool = False
    start_symbol: Optional[str] = None
    end_symbol: Optional[str] = None
    align_end: Optional[int] = None
    load_symbol: Optional[str] = None

    def collects(self, section: str) -> bool:
        return section in self.patterns

    def render(self) -> List[str]:
        header = f"    {self.name} (NOLOAD) :" if self.noload else f"    {self.name} :"
        lines = [header, "    {"]
        if self.align > 1:
            lines.append(f"        . = ALIGN({self.align});")
        if self.start_symbol:
            lines.append(f"        {self.start_symbol} = .;")
        for pattern in self.patterns:
            selector = f"SORT({pattern})" if self.sort else pattern
            entry = f"*({selector})"
            lines.append(f"        KEEP({entry})" if self.keep else f"        {entry}")
        if self.align_end:
            lines.append(f"        . = ALIGN({self.align_end});")
        if self.end_symbol:
            lines.append(f"        {self.end_symbol} = .;")
        placement = f"    }} > {self.region}"
        if self.load_region and self.load_region != self.region:
            placement += f" AT > {self.load_region}"
        lines.append(placement)
        if self.load_symbol:
            lines.append(f"    {self.load_symbol} = LOADADDR({self.name});")
        return lines


@dataclass
class MemoryLayout:
    """Ordered region and section model rendered into a GNU ld script."""

    regions: List[MemoryRegion]
    rules: List[SectionRule]
    entry: str = "reset_handler"
    code_region: str = "FLASH"
    data_region: str = "RAM"
    comment: Optional[str] = None

    def region(self, name: str) -> MemoryRegion:
        """Look up a region by name.

        Raises:
            LayoutError: If no such region exists
        """
        for region in self.regions:
            if region.name == name:
                return region
        raise LayoutError(f"Unknown memory region '{name}'")

    def rule(self, name: str) -> Optional[SectionRule]:
        for rule in self.rules:
            if rule.name == name:
                return rule
        return None

    @property
    def stack_top(self) -> int:
        """Initial stack pointer: the end of the data region."""
        return self.region(self.data_region).end

    def validate(self) -> None:
        """Check every structural invariant of the model.

        Raises:
            LayoutError: On the first violated invariant
        """
        if not self.regions:
            raise LayoutError("Memory layout defines no regions")

        names = [region.name for region in self.regions]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise LayoutError(f"Duplicate memory regions: {', '.join(duplicates)}")

        for region in self.regions:
            if region.length <= 0:
                raise LayoutError(f"Region {region.name} has non-positive length {region.length}")
            if region.origin < 0:
                raise LayoutError(f"Region {region.name} has negative origin")

        for i, first in enumerate(self.regions):
            for second in self.regions[i + 1 :]:
                if first.overlaps(second):
                    raise LayoutError(
                        f"Regions {first.name} [{format_hex(first.origin)}, {format_hex(first.end)}) "
                        + f"and {second.name} [{format_hex(second.origin)}, {format_hex(second.end)}) overlap"
                    )

        for name in (self.code_region, self.data_region):
            if name not in names:
                raise LayoutError(f"Memory layout has no {name} region")

        if not self.rules:
            raise LayoutError("Memory layout defines no section rules")

        rule_names = [rule.name for rule in self.rules]
        duplicates = sorted({name for name in rule_names if rule_names.count(name) > 1})
        if duplicates:
            raise LayoutError(f"Duplicate section rules: {', '.join(duplicates)}")

        for rule in self.rules:
            if rule.region not in names:
                raise LayoutError(f"Section {rule.name} targets unknown region '{rule.region}'")
            if rule.load_region is not None and rule.load_region not in names:
                raise LayoutError(
                    f"Section {rule.name} loads into unknown region '{rule.load_region}'"
                )
            if not rule.patterns:
                raise LayoutError(f"Section {rule.name} collects no input sections")

        self._validate_vector_table()
        self._validate_arrays()
        self._validate_bss()

    def _validate_vector_table(self) -> None:
        code_rules = [rule for rule in self.rules if rule.region == self.code_region]
        if not code_rules:
            raise LayoutError(f"No sections are placed in {self.code_region}")
        first = code_rules[0]
        if not first.collects(VECTOR_TABLE_SECTION) or not first.keep:
            raise LayoutError(
                f"The first {self.code_region} section must be a keep rule collecting "
                + f"{VECTOR_TABLE_SECTION}, found {first.name}"
            )
        if any(rule.collects(VECTOR_TABLE_SECTION) for rule in self.rules if rule is not first):
            raise LayoutError(f"{VECTOR_TABLE_SECTION} is collected by more than one section")

    def _validate_arrays(self) -> None:
        for name, (start, end) in ARRAY_BOUNDS.items():
            rule = self.rule(name)
            if rule is None:
                continue
            if not (rule.keep and rule.sort):
                raise LayoutError(f"{name} must be a kept, priority-sorted section")
            if rule.start_symbol != start or rule.end_symbol != end:
                raise LayoutError(f"{name} must be bounded by {start} and {end}")

    def _validate_bss(self) -> None:
        bss = self.rule(BSS_SECTION)
        if bss is None:
            raise LayoutError(f"Memory layout has no {BSS_SECTION} section")
        if not bss.noload:
            raise LayoutError(f"{BSS_SECTION} must be a non-loaded section")
        if bss.region != self.data_region:
            raise LayoutError(f"{BSS_SECTION} must be placed in {self.data_region}")
        if not bss.align_end or bss.align_end % BSS_END_ALIGNMENT:
            raise LayoutError(f"{BSS_SECTION} must end on a {BSS_END_ALIGNMENT}-byte boundary")

        last = self.rules[-1]
        if last.region != self.data_region:
            raise LayoutError(
                f"The last section must be placed in {self.data_region} "
                + f"so '{HEAP_START_SYMBOL}' follows the last allocation, found {last.name}"
            )

    def render(self) -> str:
        """Render the validated model as a GNU ld script.

        Raises:
            LayoutError: If the model is invalid
        """
        self.validate()

        width = max(len(region.name) for region in self.regions)
        lines = ["/*"]
        if self.comment:
            lines.append(f" * {self.comment}")
        lines.append(" * Generated by cmbuild, do not edit.")
        lines.append(" */")
        lines.append("")
        lines.append("MEMORY")
        lines.append("{")
        for region in self.regions:
            lines.append(
                f"    {region.name.ljust(width)} ({region.access}) : "
                + f"ORIGIN = {format_hex(region.origin)}, LENGTH = {format_size(region.length)}"
            )
        lines.append("}")
        lines.append("")
        lines.append(f"ENTRY({self.entry})")
        lines.append("")
        lines.append("SECTIONS")
        lines.append("{")
        for rule in self.rules:
            lines.extend(rule.render())
            lines.append("")
        lines.append(f"    . = ALIGN({BSS_END_ALIGNMENT});")
        lines.append(f"    {HEAP_START_SYMBOL} = .;")
        lines.append(
            f"    {STACK_TOP_SYMBOL} = ORIGIN({self.data_region}) + LENGTH({self.data_region});"
        )
        lines.append("}")
        return "\n".join(lines) + "\n"

    def occupancy(self, section_sizes: Mapping[str, int]) -> Dict[str, int]:
        """Compute occupied bytes per region from output section sizes.

        Loaded sections placed in one region and loaded from another (.data)
        count against both. Sections with no matching rule (debug info) do
        not occupy target memory.
        """
        usage = {region.name: 0 for region in self.regions}
        for rule in self.rules:
            size = section_sizes.get(rule.name, 0)
            if not size:
                continue
            usage[rule.region] += size
            if rule.load_region and rule.load_region != rule.region and not rule.noload:
                usage[rule.load_region] += size
        return usage

    def check_occupancy(self, usage: Mapping[str, int]) -> None:
        """Verify occupied bytes per region do not exceed region lengths.

        Raises:
            LinkError: With reason RegionOverflow naming the region
        """
        for region in self.regions:
            used = usage.get(region.name, 0)
            if used > region.length:
                raise LinkError(
                    f"region {region.name} overflowed by {used - region.length} bytes "
                    + f"({used} of {region.length})",
                    reason=LinkError.REGION_OVERFLOW,
                    subject=region.name,
                )


def default_layout(target: TargetConfiguration, entry: str = "reset_handler") -> MemoryLayout:
    """Build the standard Cortex-M layout for a target.

    Args:
        target: Resolved target configuration (supplies region sizes)
        entry: Entry point symbol

    Returns:
        Unvalidated MemoryLayout
    """
    regions = [
        MemoryRegion("FLASH", target.flash_origin, target.flash_size, "rx"),
        MemoryRegion("RAM", target.ram_origin, target.ram_size, "rwx"),
    ]
    rules: Sequence[SectionRule] = [
        SectionRule(".isr_vector", (VECTOR_TABLE_SECTION,), "FLASH", keep=True),
        SectionRule(
            ".text",
            (".text", ".text.*", ".rodata", ".rodata.*", ".glue_7", ".glue_7t"),
            "FLASH",
            align_end=4,
            end_symbol="_etext",
        ),
        SectionRule(
            ".init_array",
            (".init_array.*", ".init_array"),
            "FLASH",
            keep=True,
            sort=True,
            start_symbol="__init_array_start",
            end_symbol="__init_array_end",
        ),
        SectionRule(
            ".fini_array",
            (".fini_array.*", ".fini_array"),
            "FLASH",
            keep=True,
            sort=True,
            start_symbol="__fini_array_start",
            end_symbol="__fini_array_end",
        ),
        SectionRule(".ARM.extab", (".ARM.extab", ".ARM.extab.*", ".gnu.linkonce.armextab.*"), "FLASH"),
        SectionRule(
            ".ARM.exidx",
            (".ARM.exidx", ".ARM.exidx.*", ".gnu.linkonce.armexidx.*"),
            "FLASH",
            start_symbol="__exidx_start",
            end_symbol="__exidx_end",
        ),
        SectionRule(
            ".data",
            (".data", ".data.*"),
            "RAM",
            load_region="FLASH",
            align_end=4,
            start_symbol="_data",
            end_symbol="_edata",
            load_symbol="_ldata",
        ),
        SectionRule(
            BSS_SECTION,
            (".bss", ".bss.*", "COMMON"),
            "RAM",
            noload=True,
            align_end=BSS_END_ALIGNMENT,
            start_symbol="_bss",
            end_symbol="_ebss",
        ),
    ]
    return MemoryLayout(
        regions=regions,
        rules=list(rules),
        entry=entry,
        comment=f"Memory layout for {target.part} ({target.family})",
    )
