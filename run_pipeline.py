#!/usr/bin/env python3
from lidar_tree_carbon.command_line import main

if __name__ == "__main__":
    main()
