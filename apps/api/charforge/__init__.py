"""Character generation, storage and export API for tabletop RPG systems."""
