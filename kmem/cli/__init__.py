"""kmem command line interface."""
